"""Phase plan for Windows nodes."""
from __future__ import annotations

from ..components.arc import ArcInstaller, ArcUninstaller
from ..components.cni import CalicoInstaller, CalicoUninstaller
from ..components.containerd import ContainerdInstaller, ContainerdUninstaller
from ..components.kube_binaries import KubeBinariesInstaller, KubeBinariesUninstaller
from ..components.kubelet import WindowsKubeletInstaller, WindowsKubeletUninstaller
from ..components.runhcs import RunhcsInstaller, RunhcsUninstaller
from ..components.services import ServicesInstaller, ServicesUninstaller
from ..components.system_configuration import (
    WindowsSystemConfigurationInstaller,
    WindowsSystemConfigurationUninstaller,
)
from .phases import Phase, PhasePlan

WINDOWS_PLAN = PhasePlan(
    platform="windows",
    phases=(
        Phase(
            "system",
            installers=(WindowsSystemConfigurationInstaller,),
            uninstallers=(WindowsSystemConfigurationUninstaller,),
        ),
        Phase(
            "runtime",
            installers=(ContainerdInstaller, RunhcsInstaller),
            uninstallers=(ContainerdUninstaller, RunhcsUninstaller),
        ),
        Phase(
            "kubernetes",
            installers=(KubeBinariesInstaller,),
            uninstallers=(KubeBinariesUninstaller,),
        ),
        Phase("network", installers=(CalicoInstaller,), uninstallers=(CalicoUninstaller,)),
        Phase(
            "node-agent",
            installers=(WindowsKubeletInstaller,),
            uninstallers=(WindowsKubeletUninstaller,),
        ),
        # The kubelet authenticates through the Arc identity once it is connected.
        Phase("identity", installers=(ArcInstaller,), uninstallers=(ArcUninstaller,)),
        Phase(
            "services",
            installers=(ServicesInstaller,),
            uninstallers=(ServicesUninstaller,),
        ),
    ),
)

__all__ = ["WINDOWS_PLAN"]
