"""Deployment plan: names, hostnames and the service dependency graph.

Everything here is derived deterministically from a request and the
settings, so re-running a deployment always targets the same repositories,
compute project and DNS records.
"""

import re
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter
from pathlib import Path

from launchpad.config import Settings
from launchpad.core.exceptions import ValidationError
from launchpad.models.deployment import AppType, DeploymentRequest

POSTGRES_IMAGE = "postgres:15"


def slugify_subdomain(name: str) -> str:
    """Turn a project name into a DNS-safe label (``"Joe's Cafe & Bar"`` -> ``joe-s-cafe-and-bar``)."""
    slug = name.lower().replace("&", "-and-")
    slug = re.sub(r"[^a-z0-9]", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


@dataclass(frozen=True)
class ServiceSpec:
    """One compute service and where its code comes from.

    ``depends_on`` lists services whose endpoint or variables this service
    needs before it can be configured.
    """

    name: str
    source: str | None = None
    repo_name: str | None = None
    image: str | None = None
    hostname: str | None = None
    proxied: bool = False
    depends_on: tuple[str, ...] = ()

    @property
    def public(self) -> bool:
        return self.hostname is not None


@dataclass(frozen=True)
class DeploymentPlan:
    """Resolved naming and topology for one deployment."""

    app_type: AppType
    subdomain: str
    domain: str
    zone_id: str
    api_url: str
    admin_email: str
    services: tuple[ServiceSpec, ...] = field(default_factory=tuple)
    parent_site_subdomain: str | None = None
    parent_domain: str | None = None

    @classmethod
    def build(
        cls,
        request: DeploymentRequest,
        settings: Settings,
        has_admin: bool | None = None,
    ) -> "DeploymentPlan":
        subdomain = slugify_subdomain(request.project_name)
        if not subdomain:
            raise ValidationError(
                f"Project name {request.project_name!r} does not yield a usable subdomain"
            )
        if has_admin is None:
            has_admin = (Path(request.project_path) / "admin").is_dir()

        admin_email = request.admin_email or settings.default_admin_email

        if request.app_type == AppType.COMPANION_APP:
            parent = slugify_subdomain(request.parent_site_subdomain or "")
            if not parent:
                raise ValidationError("Companion apps need a valid parent site subdomain")
            domain = settings.app_root_domain
            services = (
                ServiceSpec(
                    name="frontend",
                    source=".",
                    repo_name=subdomain,
                    hostname=f"{subdomain}.{domain}",
                    proxied=True,
                ),
            )
            return cls(
                app_type=request.app_type,
                subdomain=subdomain,
                domain=domain,
                zone_id=settings.cloudflare_zone_id_app,
                # Companion apps talk to the parent site's backend
                api_url=f"https://api.{parent}.{settings.root_domain}",
                admin_email=admin_email,
                services=services,
                parent_site_subdomain=parent,
                parent_domain=settings.root_domain,
            )

        if request.app_type == AppType.ADVANCED_APP:
            domain = settings.app_root_domain
            zone_id = settings.cloudflare_zone_id_app
        else:
            domain = settings.root_domain
            zone_id = settings.cloudflare_zone_id

        services = [
            ServiceSpec(name="postgres", image=POSTGRES_IMAGE),
            ServiceSpec(
                name="backend",
                source="backend",
                repo_name=f"{subdomain}-backend",
                hostname=f"api.{subdomain}.{domain}",
                depends_on=("postgres",),
            ),
            ServiceSpec(
                name="frontend",
                source="frontend",
                repo_name=f"{subdomain}-frontend",
                hostname=f"{subdomain}.{domain}",
                proxied=True,
                depends_on=("backend",),
            ),
        ]
        if has_admin:
            services.append(
                ServiceSpec(
                    name="admin",
                    source="admin",
                    repo_name=f"{subdomain}-admin",
                    hostname=f"admin.{subdomain}.{domain}",
                    depends_on=("backend",),
                )
            )

        return cls(
            app_type=request.app_type,
            subdomain=subdomain,
            domain=domain,
            zone_id=zone_id,
            api_url=f"https://api.{subdomain}.{domain}",
            admin_email=admin_email,
            services=tuple(services),
        )

    def service(self, name: str) -> ServiceSpec | None:
        return next((s for s in self.services if s.name == name), None)

    @property
    def repository_services(self) -> list[ServiceSpec]:
        return [s for s in self.services if s.repo_name]

    @property
    def public_services(self) -> list[ServiceSpec]:
        return [s for s in self.services if s.public]

    def service_layers(self) -> list[list[ServiceSpec]]:
        """Group services so each layer depends only on earlier layers."""
        by_name = {s.name: s for s in self.services}
        sorter = TopologicalSorter(
            {s.name: [d for d in s.depends_on if d in by_name] for s in self.services}
        )
        try:
            sorter.prepare()
        except CycleError as e:
            raise ValidationError(f"Service dependencies form a cycle: {e.args[1]}")

        layers = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready())
            layers.append([by_name[name] for name in ready])
            sorter.done(*ready)
        return layers

    def service_order(self) -> list[ServiceSpec]:
        return [s for layer in self.service_layers() for s in layer]

    def public_url(self, name: str) -> str | None:
        spec = self.service(name)
        if spec is None or spec.hostname is None:
            return None
        return f"https://{spec.hostname}"
