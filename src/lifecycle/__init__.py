from .manager import Configurator, InstanceManager, Provisioner, Runner

__all__ = ["Configurator", "InstanceManager", "Provisioner", "Runner"]
