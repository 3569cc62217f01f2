"""DNS reconciliation on Cloudflare."""

import asyncio

from launchpad.clients.cloudflare import CloudflareClient
from launchpad.config import Settings
from launchpad.core.exceptions import PlatformError
from launchpad.core.retry import RetryPolicy, retry_async
from launchpad.deploy.plan import DeploymentPlan
from launchpad.models.deployment import (
    ComputeHandle,
    DeploymentError,
    DeploymentStage,
    DNSResult,
    ErrorKind,
    ProvisionedResource,
    ResourceKind,
    StageResult,
)
from launchpad.utils.logging import get_logger


class DNSConfigurator:
    """Points each public hostname at the target Railway issued for it.

    Services whose hostname Railway did not register fall back to their
    generated endpoint.

    Records are reconciled by removing whatever currently answers for the
    hostname and creating a single CNAME, so the zone ends up in the same
    state no matter how many times this runs.
    """

    def __init__(
        self,
        settings: Settings,
        cloudflare: CloudflareClient,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings
        self.cloudflare = cloudflare
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.logger = get_logger("deploy.dns")

    async def reconcile(
        self,
        hostname: str,
        target: str,
        zone_id: str,
        proxied: bool = False,
        resource: ProvisionedResource | None = None,
    ) -> DNSResult:
        """Make ``hostname`` a CNAME to ``target``. Never raises."""
        result = DNSResult(hostname=hostname, zone_id=zone_id, target=target, proxied=proxied)

        def count_retry(attempt: int, error: Exception) -> None:
            if resource is not None:
                resource.retry_count += 1

        async def call(operation, description: str):
            return await retry_async(operation, self.retry_policy, description, count_retry)

        try:
            existing = await call(
                lambda: self.cloudflare.list_records(zone_id, hostname), "cloudflare.list_records"
            )
            for record in existing:
                await call(
                    lambda: self.cloudflare.delete_record(zone_id, record["id"]),
                    "cloudflare.delete_record",
                )
                result.deleted_record_ids.append(record["id"])

            created = await call(
                lambda: self.cloudflare.create_record(
                    zone_id, "CNAME", hostname, target, proxied=proxied
                ),
                "cloudflare.create_record",
            )
        except PlatformError as e:
            result.error = e.message
            self.logger.error("dns.reconcile_failed", hostname=hostname, error=e.message)
            return result
        except Exception as e:
            # Malformed responses included; DNS stays advisory
            result.error = f"unexpected error: {e}"
            self.logger.exception("dns.reconcile_crashed", hostname=hostname, error=str(e))
            return result

        result.record_id = (created or {}).get("id")
        result.success = True
        self.logger.info(
            "dns.record_reconciled",
            hostname=hostname,
            target=target,
            proxied=proxied,
            replaced=len(result.deleted_record_ids),
        )
        return result

    async def configure(
        self, plan: DeploymentPlan, compute: ComputeHandle
    ) -> StageResult[list[DNSResult]]:
        """Reconcile every public hostname of the plan concurrently.

        DNS failures never fail the deployment: each one is reported as a
        warning and the service stays reachable on its generated endpoint.
        """
        errors: list[DeploymentError] = []
        resources: list[ProvisionedResource] = []
        pending = []

        for spec in plan.public_services:
            resource = ProvisionedResource(kind=ResourceKind.DNS_RECORD, name=spec.hostname)
            resources.append(resource)
            service = compute.services.get(spec.name)

            if not plan.zone_id:
                reason = "no DNS zone configured"
            elif service is None or not service.dns_target:
                reason = f"service {spec.name} has no endpoint"
            else:
                pending.append(
                    (
                        resource,
                        self.reconcile(
                            spec.hostname,
                            service.dns_target,
                            plan.zone_id,
                            proxied=spec.proxied,
                            resource=resource,
                        ),
                    )
                )
                continue

            resource.mark_failed()
            errors.append(
                DeploymentError.of(
                    DeploymentStage.DNS,
                    ErrorKind.DNS_RECONCILE_FAILURE,
                    f"{spec.hostname}: {reason}",
                    resource=spec.hostname,
                )
            )

        outcomes = await asyncio.gather(*(coro for _, coro in pending))

        for (resource, _), outcome in zip(pending, outcomes):
            url = f"https://{outcome.hostname}"
            if outcome.success:
                if outcome.deleted_record_ids:
                    resource.mark_reused(outcome.record_id or outcome.hostname, url)
                else:
                    resource.mark_created(outcome.record_id or outcome.hostname, url)
            else:
                resource.mark_failed()
                errors.append(
                    DeploymentError.of(
                        DeploymentStage.DNS,
                        ErrorKind.DNS_RECONCILE_FAILURE,
                        f"{outcome.hostname}: {outcome.error}",
                        resource=outcome.hostname,
                    )
                )

        return StageResult.from_errors(list(outcomes), errors, resources)
