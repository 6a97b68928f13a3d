from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from aws_cdk import Duration, RemovalPolicy, Stack, Tags
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecr as ecr
from aws_cdk import aws_ecs as ecs
from aws_cdk import aws_logs as logs
from aws_cdk import aws_opensearchservice as opensearch
from aws_cdk import aws_rds as rds
from aws_cdk import aws_sns as sns
from aws_cdk import aws_sns_subscriptions as subscriptions
from aws_cdk import aws_sqs as sqs
from aws_cdk import aws_ssm as ssm
from constructs import Construct

from src.config.environments import AppConfig, EnvConfig
from src.manifest.errors import ConfigurationError
from src.manifest.resource_types import (
    GENERAL_STACK_KIND,
    ResourceHandle,
    ResourceKind,
    StackIdentity,
)
from src.manifest.stack_manifest import Manifest, StackManifest

logger = logging.getLogger(__name__)

DEFAULT_VPC_CIDR = "10.10.0.0/16"
RESERVED_AZS = 2

DATABASE_ENGINE_VERSION = rds.AuroraPostgresEngineVersion.VER_15_3
DATABASE_MIN_CAPACITY = 1
DATABASE_MAX_CAPACITY = 4
DATABASE_BACKUP_RETENTION_DAYS = 7
DEFAULT_DATABASE_USERNAME = "postgres"

REGISTRY_MAX_IMAGE_COUNT = 3

TASK_CPU = 256
TASK_MEMORY_MIB = 512
CONTAINER_PORTS = (80, 443)
HEALTH_CHECK_COMMAND = ["CMD-SHELL", "curl -f http://localhost/health/ready || exit 1"]

ResourceRef = ResourceHandle | str


class StackBuilder:
    """Fluent builder that declares resources into one environment-scoped stack.

    Every ``with_*`` call materializes CDK constructs in ``self.stack`` and records
    a matching declaration in the stack manifest. Values other stacks need to
    discover (endpoints, ARNs, URLs) are published under
    ``/{env}/{app}/{service|general}/{label}`` and written to SSM Parameter Store
    when ``build()`` succeeds.

    Handles for created resources are available through ``handle(name)`` and
    ``latest(kind)`` and can be passed to another builder's operations.
    """

    def __init__(self, scope: Construct, config: EnvConfig, **kwargs) -> None:
        config.validate()
        self.config = config
        self.identity = StackIdentity(config.app_name, config.env_name, config.stack_kind)
        self.stack: Stack = Stack(scope, self.identity.stack_name, **kwargs)
        self.declarations = StackManifest(self.identity)
        self.manifest: Manifest | None = None
        self._constructs: dict[str, Any] = {}

        Tags.of(self.stack).add("App", config.app_name)
        Tags.of(self.stack).add("Environment", config.env_name)
        Tags.of(self.stack).add("Service", config.stack_kind)

        logger.info("Building stack %s", self.identity.stack_name)

    @property
    def stack_name(self) -> str:
        return self.identity.stack_name

    # === Output bindings ===

    def handle(self, name: str) -> ResourceHandle:
        resource = self.declarations.get(name)
        if resource is None:
            raise ConfigurationError(f"No resource named '{name}' in stack '{self.stack_name}'")
        return self.declarations.handle_for(resource, self._constructs[name])

    def latest(self, kind: ResourceKind) -> ResourceHandle:
        resource = self.declarations.latest(kind)
        if resource is None:
            raise ConfigurationError(f"No {kind} declared in stack '{self.stack_name}'")
        return self.declarations.handle_for(resource, self._constructs[resource.name])

    # === Network & compute ===

    def with_vpc(self, cidr: str | None = None) -> StackBuilder:
        name = self._begin(self._name("vpc"))
        cidr = cidr or getattr(self.config, "vpc_cidr", None) or DEFAULT_VPC_CIDR

        vpc = ec2.Vpc(
            self.stack,
            name,
            vpc_name=name,
            ip_addresses=ec2.IpAddresses.cidr(cidr),
            reserved_azs=RESERVED_AZS,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="public", subnet_type=ec2.SubnetType.PUBLIC, cidr_mask=24),
                ec2.SubnetConfiguration(
                    name="private", subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS, cidr_mask=24),
                ec2.SubnetConfiguration(
                    name="isolated", subnet_type=ec2.SubnetType.PRIVATE_ISOLATED, cidr_mask=20),
            ],
        )

        self._declare("Network", name, vpc, {
            "cidr": cidr,
            "reserved_azs": RESERVED_AZS,
            "subnets": ["public/24", "private/24", "isolated/20"],
        })
        return self

    def with_container_cluster(self, network: ResourceRef | None = None) -> StackBuilder:
        name = self._begin(self._name("cluster"))
        vpc_ref = self._resolve(network, "Network", "with_container_cluster")

        cluster = ecs.Cluster(
            self.stack,
            name,
            vpc=vpc_ref.construct,
            cluster_name=name,
            container_insights=True,
        )
        # Capacity is Fargate-only; add_capacity() on the cluster if EC2 hosts are needed.

        self._declare("ComputeCluster", name, cluster, {"container_insights": True}, [vpc_ref])
        return self

    # === Shared services ===

    def with_open_search(self) -> StackBuilder:
        if not isinstance(self.config, AppConfig):
            raise ConfigurationError(
                f"with_open_search needs app-level sizing; stack '{self.stack_name}' "
                f"was configured with {type(self.config).__name__}")
        name = self._begin(self._name("opensearch"))
        config = self.config

        domain = opensearch.Domain(
            self.stack,
            name,
            domain_name=name,
            version=opensearch.EngineVersion.OPENSEARCH_2_9,
            encryption_at_rest=opensearch.EncryptionAtRestOptions(enabled=True),
            ebs=opensearch.EbsOptions(
                enabled=True,
                volume_size=config.open_search_volume_size,
                volume_type=ec2.EbsDeviceVolumeType.GP3,
            ),
            zone_awareness=opensearch.ZoneAwarenessConfig(enabled=False),
            enforce_https=True,
            node_to_node_encryption=True,
            capacity=opensearch.CapacityConfig(
                data_node_instance_type=config.open_search_data_node_instance_type,
                master_node_instance_type=config.open_search_master_node_instance_type,
                data_nodes=config.open_search_data_nodes,
                master_nodes=config.open_search_master_nodes,
                multi_az_with_standby_enabled=config.open_search_multi_az,
            ),
        )

        self._declare("SearchDomain", name, domain, {
            "engine_version": "OpenSearch_2.9",
            "volume_size": config.open_search_volume_size,
            "data_node_instance_type": config.open_search_data_node_instance_type,
            "data_nodes": config.open_search_data_nodes,
            "master_node_instance_type": config.open_search_master_node_instance_type,
            "master_nodes": config.open_search_master_nodes,
            "multi_az": config.open_search_multi_az,
        })
        self._publish("OpenSearchUrl", domain.domain_endpoint)
        return self

    def with_container_registry(self) -> StackBuilder:
        name = self._begin(self._name("registry"))

        repository = ecr.Repository(
            self.stack,
            name,
            repository_name=name,
            removal_policy=RemovalPolicy.DESTROY,
            encryption=ecr.RepositoryEncryption.KMS,
            image_scan_on_push=True,
            lifecycle_rules=[
                ecr.LifecycleRule(
                    max_image_count=REGISTRY_MAX_IMAGE_COUNT,
                    tag_status=ecr.TagStatus.ANY,
                ),
            ],
            image_tag_mutability=ecr.TagMutability.IMMUTABLE,
        )

        self._declare("ContainerRegistry", name, repository, {
            "encryption": "KMS",
            "image_scan_on_push": True,
            "image_tag_mutability": "IMMUTABLE",
            "max_image_count": REGISTRY_MAX_IMAGE_COUNT,
        })
        self._publish("RegistryUri", repository.repository_uri)
        return self

    # === Database ===

    def with_database_cluster(
        self,
        credentials: rds.Credentials | None = None,
        network: ResourceRef | None = None,
    ) -> StackBuilder:
        name = self._begin(self._name("db"))
        credentials_source = "provided" if credentials is not None else "generated-secret"
        credentials = credentials or rds.Credentials.from_generated_secret(DEFAULT_DATABASE_USERNAME)

        references: list[ResourceHandle] = []
        if network is None and self.declarations.latest("Network") is None:
            self._ensure_free_id(f"{name}-vpc", name)
            vpc = ec2.Vpc(
                self.stack,
                f"{name}-vpc",
                max_azs=2,
                nat_gateways=1,
                subnet_configuration=[
                    ec2.SubnetConfiguration(name="public", subnet_type=ec2.SubnetType.PUBLIC),
                    ec2.SubnetConfiguration(
                        name="private", subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
                ],
            )
            network_name = "dedicated"
        else:
            vpc_ref = self._resolve(network, "Network", "with_database_cluster")
            vpc = vpc_ref.construct
            network_name = vpc_ref.name
            references.append(vpc_ref)

        database_name = f"{self.identity.stack_kind}_database".replace("-", "_")
        cluster = rds.DatabaseCluster(
            self.stack,
            name,
            engine=rds.DatabaseClusterEngine.aurora_postgres(version=DATABASE_ENGINE_VERSION),
            removal_policy=RemovalPolicy.DESTROY,
            serverless_v2_min_capacity=DATABASE_MIN_CAPACITY,
            serverless_v2_max_capacity=DATABASE_MAX_CAPACITY,
            default_database_name=database_name,
            storage_encrypted=True,
            backup=rds.BackupProps(retention=Duration.days(DATABASE_BACKUP_RETENTION_DAYS)),
            deletion_protection=False,
            credentials=credentials,
            vpc=vpc,
            writer=rds.ClusterInstance.serverless_v2("writer"),
        )

        self._declare("DatabaseCluster", name, cluster, {
            "engine": "aurora-postgresql",
            "engine_version": DATABASE_ENGINE_VERSION.aurora_postgres_full_version,
            "min_capacity": DATABASE_MIN_CAPACITY,
            "max_capacity": DATABASE_MAX_CAPACITY,
            "default_database_name": database_name,
            "username": credentials.username,
            "credentials": credentials_source,
            "backup_retention_days": DATABASE_BACKUP_RETENTION_DAYS,
            "storage_encrypted": True,
            "network": network_name,
            "writer": "writer",
            "readers": [],
        }, references)
        self._publish("DatabaseEndpoint", cluster.cluster_endpoint.hostname)
        return self

    def with_cluster_instance(self, instance_name: str | None = None) -> StackBuilder:
        """Add a Serverless v2 reader to the database cluster declared earlier on this builder."""
        self._ensure_open()
        resource = self.declarations.latest("DatabaseCluster")
        if resource is None:
            raise ConfigurationError(
                f"with_cluster_instance needs a database cluster; call with_database_cluster "
                f"on '{self.stack_name}' first")

        readers = list(resource.attributes["readers"])
        if not instance_name:
            n = 1
            while f"reader-{n}" in readers:
                n += 1
            instance_name = f"reader-{n}"
        if instance_name in readers or instance_name == resource.attributes["writer"]:
            raise ConfigurationError(
                f"Database cluster '{resource.name}' already has an instance named '{instance_name}'")

        cluster = self._constructs[resource.name]
        if cluster.node.try_find_child(instance_name) is not None:
            raise ConfigurationError(
                f"Construct id '{instance_name}' is already used under database cluster '{resource.name}'")

        self.declarations.amend(resource.name, readers=[*readers, instance_name])

        rds.ClusterInstance.serverless_v2(instance_name).bind(cluster, cluster)
        logger.info("Added reader %s to %s", instance_name, resource.name)
        return self

    # === Messaging ===

    def with_sns_topic(self, topic_name: str) -> StackBuilder:
        physical_name = self._name(topic_name)
        # Topic and queue ids carry a suffix so user-chosen names can't shadow builder parts.
        self._begin(topic_name, f"{physical_name}-topic")

        topic = sns.Topic(self.stack, f"{physical_name}-topic", topic_name=physical_name)

        self._declare("Topic", topic_name, topic, {"topic_name": physical_name})
        self._publish(f"{topic_name}Arn", topic.topic_arn)
        return self

    def with_sqs_queue(self, queue_name: str) -> StackBuilder:
        physical_name = self._name(queue_name)
        self._begin(queue_name, f"{physical_name}-queue")

        queue = sqs.Queue(self.stack, f"{physical_name}-queue", queue_name=physical_name)

        self._declare("Queue", queue_name, queue, {"queue_name": physical_name})
        self._publish(f"{queue_name}Url", queue.queue_url)
        return self

    def with_subscription(self, topic: ResourceRef, queue: ResourceRef) -> StackBuilder:
        topic_ref = self._resolve(topic, "Topic", "with_subscription")
        queue_ref = self._resolve(queue, "Queue", "with_subscription")
        name = f"{topic_ref.name}-{queue_ref.name}"
        if self.declarations.get(name) is not None:
            raise ConfigurationError(
                f"Queue '{queue_ref.name}' is already subscribed to topic '{topic_ref.name}'")

        subscription = subscriptions.SqsSubscription(queue_ref.construct)
        topic_ref.construct.add_subscription(subscription)

        self._declare("Subscription", name, subscription, {
            "topic": str(topic_ref),
            "queue": str(queue_ref),
            "protocol": "sqs",
        }, [topic_ref, queue_ref])
        return self

    # === Container service ===

    def with_service(
        self,
        cluster: ResourceRef,
        registry: ResourceRef | None = None,
        image_directory: str | None = None,
        image_tag: str = "latest",
        environment: Mapping[str, str] | None = None,
    ) -> StackBuilder:
        """Run the service container on Fargate in ``cluster``.

        The image is built from ``image_directory`` when given, otherwise pulled from
        ``registry`` (or the latest registry declared on this builder).
        """
        name = self._begin(self._name("service"))
        self._ensure_free_id(self._name("task"), name)
        self._ensure_free_id(f"{name}-logs", name)
        cluster_ref = self._resolve(cluster, "ComputeCluster", "with_service")
        references = [cluster_ref]

        if image_directory:
            image = ecs.ContainerImage.from_asset(
                image_directory,
                build_args={"BUILD_CONFIGURATION": "Release"},
            )
            image_source = "asset"
        else:
            if registry is None and self.declarations.latest("ContainerRegistry") is None:
                raise ConfigurationError(
                    f"with_service on '{self.stack_name}' needs an image_directory or a container registry")
            registry_ref = self._resolve(registry, "ContainerRegistry", "with_service")
            image = ecs.ContainerImage.from_ecr_repository(registry_ref.construct, tag=image_tag)
            image_source = "registry"
            references.append(registry_ref)

        task = ecs.FargateTaskDefinition(
            self.stack,
            self._name("task"),
            cpu=TASK_CPU,
            memory_limit_mib=TASK_MEMORY_MIB,
            runtime_platform=ecs.RuntimePlatform(
                operating_system_family=ecs.OperatingSystemFamily.LINUX,
                cpu_architecture=ecs.CpuArchitecture.X86_64,
            ),
        )

        log_group = logs.LogGroup(
            self.stack,
            f"{name}-logs",
            retention=logs.RetentionDays.THREE_MONTHS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        container_environment = {
            "APP_NAME": self.config.app_name,
            "ENV_NAME": self.config.env_name,
            "SERVICE_NAME": self.identity.stack_kind,
            **(environment or {}),
        }

        task.add_container(
            self._name("container"),
            image=image,
            port_mappings=[
                ecs.PortMapping(container_port=port, host_port=port, protocol=ecs.Protocol.TCP)
                for port in CONTAINER_PORTS
            ],
            health_check=ecs.HealthCheck(
                command=HEALTH_CHECK_COMMAND,
                interval=Duration.seconds(5),
                timeout=Duration.seconds(2),
                retries=3,
                start_period=Duration.seconds(10),
            ),
            readonly_root_filesystem=True,
            environment=container_environment,
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix=self.identity.stack_kind,
                log_group=log_group,
            ),
        )

        service = ecs.FargateService(
            self.stack,
            name,
            cluster=cluster_ref.construct,
            task_definition=task,
            desired_count=1,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
        )

        self._declare("ContainerService", name, service, {
            "launch_type": "FARGATE",
            "cpu": TASK_CPU,
            "memory_mib": TASK_MEMORY_MIB,
            "ports": list(CONTAINER_PORTS),
            "desired_count": 1,
            "image_source": image_source,
            "image_tag": image_tag if image_source == "registry" else None,
        }, references)
        return self

    # === Parameters & finalization ===

    def with_parameter(self, label: str, value: str) -> StackBuilder:
        """Publish an arbitrary value under this stack's parameter namespace."""
        self._ensure_open()
        self._publish(label, value)
        return self

    def build(self, upstream: Iterable[Manifest] = ()) -> Manifest:
        """Validate the declarations, write the SSM parameters and freeze the manifest.

        ``upstream`` are the manifests of the stacks this one references.
        """
        self._ensure_open()
        manifest = self.declarations.finalize(upstream)

        for entry in self.declarations.parameters:
            ssm.StringParameter(
                self.stack,
                f"{entry.label}Parameter",
                parameter_name=entry.path,
                string_value=entry.value,
            )

        self.manifest = manifest
        return manifest

    # === Internals ===

    def _name(self, part: str) -> str:
        if self.identity.stack_kind == GENERAL_STACK_KIND:
            return f"{self.config.app_name}-{part}-{self.config.env_name}"
        return f"{self.config.app_name}-{self.identity.stack_kind}-{part}-{self.config.env_name}"

    def _ensure_open(self) -> None:
        if self.manifest is not None:
            raise ConfigurationError(f"Stack '{self.stack_name}' is already built")

    def _begin(self, name: str, construct_id: str | None = None) -> str:
        """Check ``name`` is free in the manifest and ``construct_id`` (default ``name``) in the stack."""
        self._ensure_open()
        if self.declarations.get(name) is not None:
            raise ConfigurationError(f"Resource '{name}' is already declared in stack '{self.stack_name}'")
        self._ensure_free_id(construct_id or name, name)
        return name

    def _ensure_free_id(self, construct_id: str, name: str) -> None:
        if self.stack.node.try_find_child(construct_id) is not None:
            raise ConfigurationError(
                f"Construct id '{construct_id}' for resource '{name}' is already used in stack '{self.stack_name}'")

    def _declare(
        self,
        kind: ResourceKind,
        name: str,
        construct: Any,
        attributes: Mapping[str, Any],
        references: Iterable[ResourceHandle] = (),
    ) -> ResourceHandle:
        handle = self.declarations.declare(kind, name, attributes, references, construct)
        self._constructs[name] = construct
        return handle

    def _publish(self, label: str, value: str) -> None:
        self.declarations.publish(label, value)

    def _resolve(self, ref: ResourceRef | None, kind: ResourceKind, operation: str) -> ResourceHandle:
        """Turn a handle, a local resource name or nothing into a handle carrying its construct."""
        self._ensure_open()
        if ref is None:
            if self.declarations.latest(kind) is None:
                raise ConfigurationError(
                    f"{operation} needs a {kind}; declare one on '{self.stack_name}' first or pass a handle")
            return self.latest(kind)

        if isinstance(ref, str):
            handle = self.handle(ref)
        elif ref.stack_name == self.stack_name:
            handle = self.handle(ref.name)
        else:
            if ref.construct is None:
                raise ConfigurationError(
                    f"{operation} got a handle to {ref} without a materialized construct")
            handle = ref

        if handle.kind != kind:
            raise ConfigurationError(f"{operation} expects a {kind}, got {handle.kind} '{handle.name}'")
        return handle
