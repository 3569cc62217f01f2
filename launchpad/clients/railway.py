"""Railway GraphQL client."""

from typing import Any

import httpx

from launchpad.clients.base import PlatformClient
from launchpad.config import Settings
from launchpad.core.exceptions import PlatformAuthError, PlatformError

PROJECTS_QUERY = """
query projects($workspaceId: String) {
  projects(workspaceId: $workspaceId) {
    edges { node { id name environments { edges { node { id name } } } } }
  }
}
"""

PROJECT_CREATE_MUTATION = """
mutation projectCreate($input: ProjectCreateInput!) {
  projectCreate(input: $input) {
    id
    name
    environments { edges { node { id name } } }
  }
}
"""

PROJECT_SERVICES_QUERY = """
query project($id: String!) {
  project(id: $id) {
    services { edges { node { id name } } }
  }
}
"""

SERVICE_CREATE_MUTATION = """
mutation serviceCreate($input: ServiceCreateInput!) {
  serviceCreate(input: $input) { id name }
}
"""

VARIABLES_QUERY = """
query variables($projectId: String!, $environmentId: String!, $serviceId: String) {
  variables(projectId: $projectId, environmentId: $environmentId, serviceId: $serviceId)
}
"""

VARIABLES_UPSERT_MUTATION = """
mutation variableCollectionUpsert($input: VariableCollectionUpsertInput!) {
  variableCollectionUpsert(input: $input)
}
"""

REDEPLOY_MUTATION = """
mutation serviceInstanceRedeploy($environmentId: String!, $serviceId: String!) {
  serviceInstanceRedeploy(environmentId: $environmentId, serviceId: $serviceId)
}
"""

DEPLOYMENTS_QUERY = """
query deployments($input: DeploymentListInput!) {
  deployments(first: 1, input: $input) {
    edges { node { id status } }
  }
}
"""

DOMAINS_QUERY = """
query domains($projectId: String!, $environmentId: String!, $serviceId: String!) {
  domains(projectId: $projectId, environmentId: $environmentId, serviceId: $serviceId) {
    serviceDomains { id domain }
    customDomains { id domain status { dnsRecords { hostlabel requiredValue } } }
  }
}
"""

SERVICE_DOMAIN_CREATE_MUTATION = """
mutation serviceDomainCreate($input: ServiceDomainCreateInput!) {
  serviceDomainCreate(input: $input) { id domain }
}
"""

CUSTOM_DOMAIN_CREATE_MUTATION = """
mutation customDomainCreate($input: CustomDomainCreateInput!) {
  customDomainCreate(input: $input) {
    id
    domain
    status { dnsRecords { hostlabel requiredValue } }
  }
}
"""


def _nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    return [edge["node"] for edge in (connection or {}).get("edges", [])]


class RailwayClient(PlatformClient):
    """Thin wrapper over the Railway public GraphQL API."""

    platform = "railway"

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            settings.railway_api_url,
            headers={
                "Authorization": f"Bearer {settings.railway_token}",
                "Content-Type": "application/json",
            },
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )
        self.team_id = settings.railway_team_id

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a query and return its ``data`` member."""
        response = await self._request("POST", "", json={"query": query, "variables": variables or {}})
        try:
            payload = response.json()
        except ValueError:
            raise PlatformError(
                self.platform, f"unparseable response: {response.text[:200]}", retryable=True
            )

        errors = payload.get("errors")
        if errors:
            message = errors[0].get("message", "unknown GraphQL error")
            if "not authorized" in message.lower() or "unauthorized" in message.lower():
                raise PlatformAuthError(self.platform, message)
            # Railway reports transient backend faults as GraphQL errors too
            raise PlatformError(self.platform, message, retryable=True)
        return payload.get("data") or {}

    @staticmethod
    def _project_summary(project: dict[str, Any]) -> dict[str, Any]:
        environments = _nodes(project.get("environments"))
        production = next(
            (env for env in environments if env["name"] == "production"),
            environments[0] if environments else None,
        )
        return {
            "id": project["id"],
            "name": project["name"],
            "environment_id": production["id"] if production else None,
        }

    async def find_project(self, name: str) -> dict[str, Any] | None:
        data = await self.graphql(PROJECTS_QUERY, {"workspaceId": self.team_id})
        for project in _nodes(data.get("projects")):
            if project["name"] == name:
                return self._project_summary(project)
        return None

    async def create_project(self, name: str) -> dict[str, Any]:
        project_input: dict[str, Any] = {"name": name}
        if self.team_id:
            project_input["workspaceId"] = self.team_id
        data = await self.graphql(PROJECT_CREATE_MUTATION, {"input": project_input})
        return self._project_summary(data["projectCreate"])

    async def list_services(self, project_id: str) -> list[dict[str, Any]]:
        data = await self.graphql(PROJECT_SERVICES_QUERY, {"id": project_id})
        return _nodes((data.get("project") or {}).get("services"))

    async def create_service(
        self,
        project_id: str,
        name: str,
        repo: str | None = None,
        image: str | None = None,
        branch: str = "main",
    ) -> dict[str, Any]:
        service_input: dict[str, Any] = {"projectId": project_id, "name": name}
        if repo:
            service_input["source"] = {"repo": repo}
            service_input["branch"] = branch
        elif image:
            service_input["source"] = {"image": image}
        data = await self.graphql(SERVICE_CREATE_MUTATION, {"input": service_input})
        return data["serviceCreate"]

    async def get_variables(
        self, project_id: str, environment_id: str, service_id: str
    ) -> dict[str, str]:
        data = await self.graphql(
            VARIABLES_QUERY,
            {"projectId": project_id, "environmentId": environment_id, "serviceId": service_id},
        )
        return data.get("variables") or {}

    async def upsert_variables(
        self,
        project_id: str,
        environment_id: str,
        service_id: str,
        variables: dict[str, str],
    ) -> None:
        await self.graphql(
            VARIABLES_UPSERT_MUTATION,
            {
                "input": {
                    "projectId": project_id,
                    "environmentId": environment_id,
                    "serviceId": service_id,
                    "variables": variables,
                }
            },
        )

    async def redeploy(self, environment_id: str, service_id: str) -> None:
        await self.graphql(
            REDEPLOY_MUTATION, {"environmentId": environment_id, "serviceId": service_id}
        )

    async def latest_deployment(
        self, project_id: str, environment_id: str, service_id: str
    ) -> dict[str, Any] | None:
        data = await self.graphql(
            DEPLOYMENTS_QUERY,
            {
                "input": {
                    "projectId": project_id,
                    "environmentId": environment_id,
                    "serviceId": service_id,
                }
            },
        )
        deployments = _nodes(data.get("deployments"))
        return deployments[0] if deployments else None

    async def _domains(
        self, project_id: str, environment_id: str, service_id: str
    ) -> dict[str, Any]:
        data = await self.graphql(
            DOMAINS_QUERY,
            {"projectId": project_id, "environmentId": environment_id, "serviceId": service_id},
        )
        return data.get("domains") or {}

    @staticmethod
    def _custom_domain_summary(domain: dict[str, Any]) -> dict[str, Any]:
        records = (domain.get("status") or {}).get("dnsRecords") or []
        target = next((r["requiredValue"] for r in records if r.get("requiredValue")), None)
        return {"id": domain["id"], "domain": domain["domain"], "target": target}

    async def service_domains(
        self, project_id: str, environment_id: str, service_id: str
    ) -> list[str]:
        domains = await self._domains(project_id, environment_id, service_id)
        return [d["domain"] for d in domains.get("serviceDomains") or []]

    async def custom_domains(
        self, project_id: str, environment_id: str, service_id: str
    ) -> list[dict[str, Any]]:
        """Custom hostnames attached to a service, each with its CNAME ``target``."""
        domains = await self._domains(project_id, environment_id, service_id)
        return [self._custom_domain_summary(d) for d in domains.get("customDomains") or []]

    async def create_custom_domain(
        self, project_id: str, environment_id: str, service_id: str, domain: str
    ) -> dict[str, Any]:
        data = await self.graphql(
            CUSTOM_DOMAIN_CREATE_MUTATION,
            {
                "input": {
                    "projectId": project_id,
                    "environmentId": environment_id,
                    "serviceId": service_id,
                    "domain": domain,
                }
            },
        )
        return self._custom_domain_summary(data["customDomainCreate"])

    async def create_service_domain(self, environment_id: str, service_id: str) -> str:
        data = await self.graphql(
            SERVICE_DOMAIN_CREATE_MUTATION,
            {"input": {"environmentId": environment_id, "serviceId": service_id}},
        )
        return data["serviceDomainCreate"]["domain"]
