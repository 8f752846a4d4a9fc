from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, TypeVar

from state.models import InstanceEventEnum, InstanceStateV1
from state.writer import StateWriter


logger = logging.getLogger(__name__)

T = TypeVar("T")


class Provisioner(Protocol):
    async def provision(self, state: InstanceStateV1) -> Mapping[str, Any]: ...

    async def destroy(self, state: InstanceStateV1) -> None: ...


class Configurator(Protocol):
    async def configure(self, state: InstanceStateV1) -> Mapping[str, Any]: ...


class Runner(Protocol):
    async def start(self, state: InstanceStateV1) -> None: ...

    async def stop(self, state: InstanceStateV1) -> None: ...


class InstanceManager:
    """
    Drive one instance through provision, configuration, start/stop and
    destruction, recording Begin/End events through the state writer.

    Collaborators receive a clone of the current state. When a collaborator
    raises, the matching End event is not recorded and the error propagates.
    """

    def __init__(
        self,
        *,
        writer: StateWriter[Any],
        provisioner: Provisioner,
        configurator: Optional[Configurator] = None,
        runner: Optional[Runner] = None,
    ) -> None:
        self.writer = writer
        self.provisioner = provisioner
        self.configurator = configurator
        self.runner = runner

    def name(self) -> str:
        return self.writer.instance_name()

    async def _step(
        self,
        label: str,
        begin: InstanceEventEnum,
        end: InstanceEventEnum,
        action: Callable[[InstanceStateV1], Awaitable[T]],
    ) -> T:
        name = self.name()
        logger.info("%s instance %s", label, name)
        await self.writer.add_event(begin)
        result = await action(self.writer.clone_state())
        await self.writer.add_event(end)
        logger.info("%s instance %s done", label, name)
        return result

    async def provision(self) -> None:
        async def action(state: InstanceStateV1) -> None:
            output = await self.provisioner.provision(state)
            await self.writer.set_provision_output(dict(output))

        await self._step(
            "Provisioning", InstanceEventEnum.ProvisionBegin, InstanceEventEnum.ProvisionEnd, action
        )

    async def configure(self) -> None:
        if self.configurator is None:
            raise RuntimeError(f"No configurator set for instance {self.name()}")
        configurator = self.configurator

        async def action(state: InstanceStateV1) -> None:
            output = await configurator.configure(state)
            await self.writer.set_configuration_output(dict(output))

        await self._step(
            "Configuring", InstanceEventEnum.ConfigurationBegin, InstanceEventEnum.ConfigurationEnd, action
        )

    async def deploy(self) -> None:
        await self.provision()
        await self.configure()

    async def start(self) -> None:
        runner = self._require_runner()
        await self._step("Starting", InstanceEventEnum.StartBegin, InstanceEventEnum.StartEnd, runner.start)

    async def stop(self) -> None:
        runner = self._require_runner()
        await self._step("Stopping", InstanceEventEnum.StopBegin, InstanceEventEnum.StopEnd, runner.stop)

    async def destroy(self) -> None:
        """Destroy the instance, then delete its durable state."""
        await self._step(
            "Destroying",
            InstanceEventEnum.DestroyBegin,
            InstanceEventEnum.DestroyEnd,
            self.provisioner.destroy,
        )
        await self.writer.destroy_state()

    def _require_runner(self) -> Runner:
        if self.runner is None:
            raise RuntimeError(f"No runner set for instance {self.name()}")
        return self.runner


__all__ = ["InstanceManager", "Provisioner", "Configurator", "Runner"]
