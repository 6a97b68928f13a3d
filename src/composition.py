from __future__ import annotations

import logging

from constructs import Construct

from src.config.environments import get_app_config, get_service_config
from src.stacks.stack_builder import StackBuilder

logger = logging.getLogger(__name__)


def compose(scope: Construct, env_name: str, **stack_kwargs) -> dict[str, StackBuilder]:
    """Declare every stack of the app for one environment.

    The general stack owns the network, the ECS cluster, the search domain and
    the container registry; service stacks reference those through handles.
    Returns the built builders keyed by stack name, in build order.
    """
    general = (
        StackBuilder(scope, get_app_config(env_name), **stack_kwargs)
        .with_vpc()
        .with_container_cluster()
        .with_open_search()
        .with_container_registry()
    )
    cluster = general.latest("ComputeCluster")
    registry = general.latest("ContainerRegistry")
    general_manifest = general.build()

    notification = (
        StackBuilder(scope, get_service_config("notification", env_name), **stack_kwargs)
        .with_database_cluster()
        .with_cluster_instance()
        .with_sns_topic("sendEmailRequest")
        .with_sqs_queue("sendEmailQueue")
        .with_subscription("sendEmailRequest", "sendEmailQueue")
        .with_service(cluster, registry=registry)
    )
    notification.build(upstream=[general_manifest])

    builders = {b.stack_name: b for b in (general, notification)}
    logger.info("Composed %d stack(s) for %s: %s", len(builders), env_name, ", ".join(builders))
    return builders
