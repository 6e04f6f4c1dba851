"""
containerd 데몬
"""

from jinja2 import Template

from .config import Config
from .daemon import DaemonManager, ManagedDaemon
from .utils import rooted, write_file_if_different

DAEMON_NAME = "containerd"
CONFIG_PATH = "/etc/containerd/config.toml"

CONFIG_TEMPLATE = Template("""version = 2
root = "/var/lib/containerd"
state = "/run/containerd"

[grpc]
address = "/run/containerd/containerd.sock"

[plugins."io.containerd.grpc.v1.cri".containerd]
default_runtime_name = "runc"
discard_unpacked_layers = true

[plugins."io.containerd.grpc.v1.cri"]
sandbox_image = "{{ sandbox_image }}"

[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc]
runtime_type = "io.containerd.runc.v2"

[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
SystemdCgroup = true

[plugins."io.containerd.grpc.v1.cri".cni]
bin_dir = "/opt/cni/bin"
conf_dir = "/etc/cni/net.d"
""", keep_trailing_newline=True)

SANDBOX_IMAGE = "registry.k8s.io/pause:3.10"


class ContainerdDaemon(ManagedDaemon):
    def __init__(self, manager: DaemonManager, config: Config, install_root: str = "/"):
        super().__init__(manager)
        self.config = config
        self.install_root = install_root

    @property
    def name(self) -> str:
        return DAEMON_NAME

    def configure(self):
        rendered = CONFIG_TEMPLATE.render(sandbox_image=SANDBOX_IMAGE)
        write_file_if_different(rooted(self.install_root, CONFIG_PATH), rendered.encode(), 0o644)
        self.manager.reload()
