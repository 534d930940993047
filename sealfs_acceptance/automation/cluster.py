#!/usr/bin/env python3
"""Launch the SealFS manager and storage servers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from sealfs_acceptance.automation.config import expand_path
from sealfs_acceptance.automation.process_utils import ProcessHandle, ProcessRegistry, log_progress
from sealfs_acceptance.automation.readiness import ReadinessPolicy, all_probes, tcp_probe


@dataclass
class CommandSpec:
    name: str
    argv: List[str]
    log_suffix: str
    role: str
    env: Optional[Dict[str, str]] = None
    address: Optional[str] = None


@dataclass
class StorageNode:
    index: int
    address: str
    database_path: str
    storage_path: str


@dataclass
class ClusterTopology:
    host: str
    base_port: int
    base_path: Path
    nodes: List[StorageNode] = field(default_factory=list)

    @classmethod
    def build(cls, host: str, base_port: int, count: int, base_path: Path) -> "ClusterTopology":
        if count < 1:
            raise ValueError("cluster needs at least one storage node")
        # Trailing slash is what the servers expect for their directories.
        nodes = [
            StorageNode(
                index=idx,
                address=f"{host}:{base_port + idx}",
                database_path=f"{base_path / f'database{idx}'}/",
                storage_path=f"{base_path / f'storage{idx}'}/",
            )
            for idx in range(count)
        ]
        return cls(host=host, base_port=base_port, base_path=base_path, nodes=nodes)

    @property
    def addresses(self) -> List[str]:
        return [node.address for node in self.nodes]


def topology_from_config(cfg: Dict, base_path: Path) -> ClusterTopology:
    cluster = cfg["cluster"]
    return ClusterTopology.build(
        host=str(cluster.get("host", "127.0.0.1")),
        base_port=int(cluster.get("base_port", 8085)),
        count=int(cluster.get("nodes", 5)),
        base_path=base_path,
    )


def build_manager_command(cfg: Dict) -> CommandSpec:
    manager = cfg["manager"]
    return CommandSpec(
        name="manager",
        argv=[str(expand_path(cfg["binaries"]["manager"])), "--log-level", cfg["log_level"]],
        log_suffix="manager.log",
        role="coordinator",
        env={"SEALFS_CONFIG_PATH": str(manager.get("config_dir", "./examples"))},
        address=manager.get("address"),
    )


def build_cluster_commands(cfg: Dict, topology: ClusterTopology) -> List[CommandSpec]:
    server_bin = str(expand_path(cfg["binaries"]["server"]))
    specs: List[CommandSpec] = []
    for node in topology.nodes:
        specs.append(
            CommandSpec(
                name=f"server-{node.index}",
                argv=[
                    server_bin,
                    "--server-address",
                    node.address,
                    "--database-path",
                    node.database_path,
                    "--storage-path",
                    node.storage_path,
                    "--log-level",
                    cfg["log_level"],
                ],
                log_suffix=f"server_{node.index}.log",
                role="storage-node",
                address=node.address,
            )
        )
    return specs


def launch_cluster(
    cfg: Dict,
    topology: ClusterTopology,
    registry: ProcessRegistry,
    readiness: ReadinessPolicy,
    artifact_dir: Path,
) -> List[ProcessHandle]:
    manager_spec = build_manager_command(cfg)
    manager = registry.spawn(
        manager_spec.name,
        manager_spec.argv,
        role=manager_spec.role,
        log_path=artifact_dir / manager_spec.log_suffix,
        env=manager_spec.env,
    )
    manager_probe = tcp_probe(manager_spec.address) if manager_spec.address else None
    readiness.wait("manager", float(cfg["manager"].get("settle_s", 1)), manager_probe)
    registry.ensure_alive([manager])

    servers: List[ProcessHandle] = []
    for spec in build_cluster_commands(cfg, topology):
        servers.append(
            registry.spawn(spec.name, spec.argv, role=spec.role, log_path=artifact_dir / spec.log_suffix)
        )
    cluster_probe = all_probes(*(tcp_probe(address) for address in topology.addresses))
    readiness.wait("cluster", float(cfg["cluster"].get("settle_s", 3)), cluster_probe)
    registry.ensure_alive([manager, *servers])
    log_progress(artifact_dir, "cluster", f"manager + {len(servers)} servers up: {', '.join(topology.addresses)}")
    return [manager, *servers]
