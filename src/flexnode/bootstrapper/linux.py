"""Phase plan for Linux (systemd) nodes."""
from __future__ import annotations

from ..components.arc import ArcInstaller, ArcUninstaller
from ..components.cluster_credentials import (
    ClusterCredentialsInstaller,
    ClusterCredentialsUninstaller,
)
from ..components.cni import CNIInstaller, CNIUninstaller
from ..components.containerd import ContainerdInstaller, ContainerdUninstaller
from ..components.kube_binaries import KubeBinariesInstaller, KubeBinariesUninstaller
from ..components.kubelet import KubeletInstaller, KubeletUninstaller
from ..components.npd import NPDInstaller, NPDUninstaller
from ..components.runc import RuncInstaller, RuncUninstaller
from ..components.services import ServicesInstaller, ServicesUninstaller
from ..components.system_configuration import (
    SystemConfigurationInstaller,
    SystemConfigurationUninstaller,
)
from .phases import Phase, PhasePlan

LINUX_PLAN = PhasePlan(
    platform="linux",
    phases=(
        Phase(
            "identity",
            installers=(ArcInstaller, ClusterCredentialsInstaller),
            uninstallers=(ArcUninstaller, ClusterCredentialsUninstaller),
        ),
        # Stop kubelet before its configuration is rewritten.
        Phase("quiesce", installers=(ServicesUninstaller,)),
        Phase(
            "system",
            installers=(SystemConfigurationInstaller,),
            uninstallers=(SystemConfigurationUninstaller,),
        ),
        Phase(
            "runtime",
            installers=(RuncInstaller, ContainerdInstaller),
            uninstallers=(RuncUninstaller, ContainerdUninstaller),
        ),
        Phase(
            "kubernetes",
            installers=(KubeBinariesInstaller,),
            uninstallers=(KubeBinariesUninstaller,),
        ),
        Phase("network", installers=(CNIInstaller,), uninstallers=(CNIUninstaller,)),
        Phase(
            "node-agent",
            installers=(KubeletInstaller, NPDInstaller),
            uninstallers=(KubeletUninstaller, NPDUninstaller),
        ),
        Phase(
            "services",
            installers=(ServicesInstaller,),
            uninstallers=(ServicesUninstaller,),
        ),
    ),
)

__all__ = ["LINUX_PLAN"]
