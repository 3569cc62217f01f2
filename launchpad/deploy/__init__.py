"""Deployment pipeline stages."""

from launchpad.deploy.compute import ComputeProvisioner
from launchpad.deploy.credentials import CredentialValidator
from launchpad.deploy.dns import DNSConfigurator
from launchpad.deploy.orchestrator import DeploymentOrchestrator
from launchpad.deploy.plan import DeploymentPlan, ServiceSpec, slugify_subdomain
from launchpad.deploy.repository import RepositoryProvisioner
from launchpad.deploy.workspace import WorkspacePreparer

__all__ = [
    "ComputeProvisioner",
    "CredentialValidator",
    "DNSConfigurator",
    "DeploymentOrchestrator",
    "DeploymentPlan",
    "ServiceSpec",
    "slugify_subdomain",
    "RepositoryProvisioner",
    "WorkspacePreparer",
]
