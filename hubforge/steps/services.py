"""Persistent service units: management UI and the workload stack."""

from __future__ import annotations

import logging
import os

from hubforge.core.context import AgentContext
from hubforge.models.layout import COMPOSE_UNIT, PORTAINER_UNIT, DeviceLayout
from hubforge.models.profile import ProvisioningProfile
from hubforge.steps.base import BaseStep, StepOutcome

logger = logging.getLogger(__name__)

PORTAINER_PORT = 9000


def render_portainer_unit(profile: ProvisioningProfile, layout: DeviceLayout) -> str:
    data_dir = layout.device_path(layout.portainer_data_dir)
    return (
        "[Unit]\n"
        "Description=Portainer CE\n"
        "Requires=docker.service\n"
        "After=docker.service network-online.target\n"
        "Wants=network-online.target\n"
        "\n"
        "[Service]\n"
        "Type=oneshot\n"
        "RemainAfterExit=yes\n"
        "ExecStartPre=-/usr/bin/docker rm -f portainer\n"
        "ExecStart=/usr/bin/docker run -d \\\n"
        "  --name portainer \\\n"
        "  --restart=always \\\n"
        f"  -p {PORTAINER_PORT}:{PORTAINER_PORT} \\\n"
        "  -v /var/run/docker.sock:/var/run/docker.sock \\\n"
        f"  -v {data_dir}:/data \\\n"
        f"  {profile.portainer_image}\n"
        "ExecStop=/usr/bin/docker stop portainer\n"
        "TimeoutStartSec=0\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


def render_compose_unit(profile: ProvisioningProfile, layout: DeviceLayout) -> str:
    """One unit bringing every workload up on boot; each entry may fail alone."""
    app_dir = layout.device_path(layout.app_dir)
    starts = []
    stops = []
    for workload in profile.workloads:
        workload_dir = app_dir / workload
        starts.append(
            f"ExecStart=-/bin/sh -c 'cd {workload_dir} && exec /usr/bin/docker compose up -d'\n"
        )
        stops.append(
            f"ExecStop=-/bin/sh -c 'cd {workload_dir} && exec /usr/bin/docker compose down'\n"
        )
    return (
        "[Unit]\n"
        "Description=HomeHub Docker Compose stacks\n"
        "Requires=docker.service\n"
        "After=docker.service network-online.target\n"
        "Wants=network-online.target\n"
        "\n"
        "[Service]\n"
        "Type=oneshot\n"
        "RemainAfterExit=yes\n"
        f"WorkingDirectory={app_dir}\n"
        + "".join(starts)
        + "".join(stops)
        + "TimeoutStartSec=0\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


class ServiceUnitsStep(BaseStep):
    @property
    def step_id(self) -> str:
        return "service_units"

    def execute(self, ctx: AgentContext) -> StepOutcome:
        layout = ctx.layout
        warnings: list[str] = []

        data_dir = layout.portainer_data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(data_dir, 0o755)
        ctx.sh(["chown", f"{ctx.user}:{ctx.user}", str(data_dir)])

        layout.systemd_dir.mkdir(parents=True, exist_ok=True)
        units = {
            PORTAINER_UNIT: render_portainer_unit(ctx.profile, layout),
            COMPOSE_UNIT: render_compose_unit(ctx.profile, layout),
        }
        for name, content in units.items():
            path = layout.systemd_dir / name
            path.write_text(content, encoding="utf-8")
            os.chmod(path, 0o644)
            logger.info("Wrote %s", path)

        ctx.sh(["systemctl", "daemon-reload"])
        for name in units:
            if not ctx.sh(["systemctl", "enable", name], check=False).ok:
                warnings.append(f"failed to enable {name}")
        return StepOutcome(
            detail=f"{', '.join(units)} configured; UI on port {PORTAINER_PORT}",
            warnings=warnings,
        )
