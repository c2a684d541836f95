"""
Engine service: domain-typed operations over the engine transport.

This module is the only surface the rest of octo (CLI commands, TUI
screens) uses to talk to the engine. It provides:
  - Listings (containers, images, volumes, networks) normalized into
    octo.model dataclasses
  - Filtered queries (dangling images, stopped containers, unused volumes)
  - Disk usage with reclaimable bytes attributed per category
  - Targeted removals and prunes
  - A dry-run twin for every destructive operation, returning a
    ConfirmationInfo without touching engine state
  - Container lifecycle actions, one-shot metrics and logs

Error Handling:
  - Every engine call goes through the engine_call decorator, which derives
    a child Context with the operation's timeout and translates docker-py /
    requests exceptions into octo.errors types
  - Errors are logged and re-raised; nothing is retried here
  - refresh_all() is the one place where failures are collected as warnings

Safety:
  - remove_container() re-lists containers right before removing, so a
    container that started running after the user confirmed is refused
  - System networks (bridge, host, none) are never removed

Dependencies:
  - docker>=7.0.0 (low-level APIClient via octo.transport)
"""

import functools
import threading
import logging
from typing import Any, Callable, Dict, List, Optional

import docker
import requests

from . import logstream
from .context import Context
from .errors import (
    CancelledError, DaemonUnresponsiveError, DeadlineExceededError, EngineRejectError,
    NotFoundError, OctoError, ProtectedResourceError, StateChangedError, TransportError,
)
from .model import (
    ConfirmationInfo, ContainerInfo, ContainerMetrics, DiskUsageInfo, ImageInfo, LogEntry,
    NetworkInfo, PruneResult, ResourceSnapshot, SafetyTier, VolumeInfo, SYSTEM_NETWORKS, format_bytes,
    format_ports, parse_created, parse_image_tag, strip_container_name, trim_image_id, truncate_id,
)
from .timeouts import (
    TIMEOUT_ACTION, TIMEOUT_DISK_USAGE, TIMEOUT_LIST, TIMEOUT_LOGS, TIMEOUT_PING,
    TIMEOUT_PRUNE, TIMEOUT_REMOVE, TIMEOUT_STATS,
)
from .transport import DEFAULT_REQUEST_TIMEOUT, EngineAPI, connect

logger = logging.getLogger(__name__)

STOPPED_STATES = ["exited", "created", "dead"]
DANGLING_TAG = "<none>:<none>"


def _explain(e: docker.errors.APIError) -> str:
    return e.explanation if getattr(e, "explanation", None) else str(e)


def engine_call(timeout: float, readonly: bool = True) -> Callable:
    """
    Decorator for service methods that talk to the engine.

    Derives a child Context with `timeout`, applies its remaining time to
    every HTTP request the method makes, and translates exceptions:
      docker.errors.NotFound        -> NotFoundError
      docker.errors.APIError        -> EngineRejectError
      requests Timeout              -> DeadlineExceededError
      connection / DockerException  -> TransportError (CancelledError if cancelled)

    Readonly calls also re-check cancellation after the engine answered, so a
    superseded refresh never hands back stale data.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args, ctx: Optional[Context] = None, **kwargs) -> Any:
            scope = ctx.with_timeout(timeout) if ctx is not None else Context(timeout=timeout)
            try:
                scope.check()
                with self.api.request_timeout(scope.remaining()):
                    result = func(self, *args, ctx=scope, **kwargs)
            except OctoError:
                raise
            except docker.errors.NotFound as e:
                logger.error(f"{func.__name__}: not found: {_explain(e)}")
                raise NotFoundError(_explain(e)) from e
            except docker.errors.APIError as e:
                logger.error(f"{func.__name__}: engine rejected request: {_explain(e)}", exc_info=True)
                raise EngineRejectError(_explain(e), status_code=e.status_code) from e
            except requests.exceptions.Timeout as e:
                logger.error(f"{func.__name__}: timed out after {timeout}s")
                raise DeadlineExceededError(f"{func.__name__} timed out") from e
            except (requests.exceptions.RequestException, docker.errors.DockerException) as e:
                if scope.cancelled:
                    raise CancelledError(f"{func.__name__} cancelled") from e
                logger.error(f"{func.__name__}: transport failure: {e}", exc_info=True)
                raise TransportError(str(e)) from e
            finally:
                scope.close()
            if readonly and scope.cancelled:
                raise CancelledError(f"{func.__name__} cancelled")
            return result
        return wrapper
    return decorator


def _to_container(raw: Dict[str, Any]) -> ContainerInfo:
    full_id = raw.get('Id', '')
    return ContainerInfo(
        id=full_id,
        short_id=truncate_id(full_id),
        name=strip_container_name(raw.get('Names')),
        image=raw.get('Image', ''),
        status=raw.get('Status', ''),
        state=raw.get('State', ''),
        created=parse_created(raw.get('Created')),
        ports=format_ports(raw.get('Ports')),
        size=raw.get('SizeRw') or 0,
        labels=dict(raw.get('Labels') or {}),
    )


def _repo_tags(raw: Dict[str, Any]) -> List[str]:
    return [t for t in (raw.get('RepoTags') or []) if t != DANGLING_TAG]


def _to_images(raw: Dict[str, Any], containers: int) -> List[ImageInfo]:
    """One entry per repository tag; a single dangling entry when untagged."""
    full_id = raw.get('Id', '')
    common = dict(
        id=trim_image_id(full_id),
        full_id=full_id,
        size=raw.get('Size') or 0,
        created=parse_created(raw.get('Created')),
        containers=containers,
    )
    tags = _repo_tags(raw)
    if not tags:
        return [ImageInfo(repository="", tag="", dangling=True, **common)]
    result = []
    for ref in tags:
        repo, tag = parse_image_tag(ref)
        result.append(ImageInfo(repository=repo, tag=tag, dangling=False, **common))
    return result


def _to_volume(raw: Dict[str, Any], in_use: bool) -> VolumeInfo:
    usage = raw.get('UsageData') or {}
    size = usage.get('Size')
    return VolumeInfo(
        name=raw.get('Name', ''),
        driver=raw.get('Driver', 'local'),
        mountpoint=raw.get('Mountpoint', ''),
        size=size if isinstance(size, int) and size >= 0 else None,
        created=parse_created(raw.get('CreatedAt')),
        labels=dict(raw.get('Labels') or {}),
        in_use=in_use,
    )


def _to_network(raw: Dict[str, Any], connected: int) -> NetworkInfo:
    full_id = raw.get('Id', '')
    return NetworkInfo(
        id=full_id,
        short_id=truncate_id(full_id),
        name=raw.get('Name', ''),
        driver=raw.get('Driver', ''),
        scope=raw.get('Scope', ''),
        internal=bool(raw.get('Internal', False)),
        containers=connected,
    )


def _matches_id(full_id: str, wanted: str) -> bool:
    return full_id == wanted or truncate_id(full_id) == wanted


class DockerService:
    """Domain-typed engine operations. Owns its transport and closes it."""

    def __init__(self, api: EngineAPI):
        self.api = api
        self._pending: Dict[str, Context] = {}
        self._pending_lock = threading.Lock()

    @classmethod
    def connect(cls, base_url: Optional[str] = None, timeout: int = DEFAULT_REQUEST_TIMEOUT) -> 'DockerService':
        return cls(connect(base_url, timeout))

    def close(self) -> None:
        with self._pending_lock:
            pending, self._pending = self._pending, {}
        for ctx in pending.values():
            ctx.cancel()
        self.api.close()

    def __enter__(self) -> 'DockerService':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # --- Refresh bookkeeping ---

    def begin_refresh(self, kind: str, parent: Optional[Context] = None) -> Context:
        """Start a refresh of `kind`, cancelling the one still pending, if any."""
        ctx = parent.with_timeout(None) if parent is not None else Context()
        with self._pending_lock:
            previous = self._pending.get(kind)
            self._pending[kind] = ctx
        if previous is not None:
            logger.debug(f"Cancelling superseded {kind} refresh")
            previous.cancel()
        return ctx

    def finish_refresh(self, kind: str, ctx: Context) -> None:
        with self._pending_lock:
            if self._pending.get(kind) is ctx:
                del self._pending[kind]
        ctx.close()

    # --- Engine ---

    def ping(self) -> None:
        """Liveness probe. Raises DaemonUnresponsiveError when the engine does not answer."""
        try:
            with self.api.request_timeout(TIMEOUT_PING):
                self.api.ping()
        except (requests.exceptions.RequestException, docker.errors.DockerException) as e:
            raise DaemonUnresponsiveError(f"daemon unresponsive: {e}") from e

    @engine_call(TIMEOUT_ACTION)
    def get_server_info(self, ctx: Context = None) -> Dict[str, Any]:
        return self.api.info()

    # --- Raw lookups shared by listings, removals and dry runs ---

    def _raw_containers(self, all: bool = True, filters: Optional[Dict] = None) -> List[Dict[str, Any]]:
        return list(self.api.containers(all=all, size=True, filters=filters) or [])

    def _find_container(self, wanted: str) -> Dict[str, Any]:
        for raw in self._raw_containers(all=True):
            if _matches_id(raw.get('Id', ''), wanted) or strip_container_name(raw.get('Names')) == wanted:
                return raw
        raise NotFoundError("container not found", wanted)

    def _find_image(self, wanted: str) -> Dict[str, Any]:
        # "nginx" means "nginx:latest", as it does for the engine.
        repo, tag = parse_image_tag(wanted)
        reference = f"{repo}:{tag}"
        for raw in self.api.images(all=True) or []:
            full_id = raw.get('Id', '')
            if full_id == wanted or trim_image_id(full_id) == wanted:
                return raw
            tags = _repo_tags(raw)
            if wanted in tags or reference in tags:
                return raw
        raise NotFoundError("image not found", wanted)

    def _find_volume(self, name: str) -> Dict[str, Any]:
        for raw in (self.api.volumes() or {}).get('Volumes') or []:
            if raw.get('Name') == name:
                return raw
        raise NotFoundError("volume not found", name)

    def _find_network(self, wanted: str) -> Dict[str, Any]:
        for raw in self.api.networks() or []:
            if _matches_id(raw.get('Id', ''), wanted) or raw.get('Name') == wanted:
                return raw
        raise NotFoundError("network not found", wanted)

    def _mounted_volumes(self) -> set:
        used = set()
        for raw in self._raw_containers(all=True):
            for mount in raw.get('Mounts') or []:
                if mount.get('Type') == 'volume' and mount.get('Name'):
                    used.add(mount['Name'])
        return used

    def _image_usage(self) -> Dict[str, int]:
        """Containers per image id, for engines that report the count as unknown."""
        usage: Dict[str, int] = {}
        for raw in self._raw_containers(all=True):
            image_id = raw.get('ImageID')
            if image_id:
                usage[image_id] = usage.get(image_id, 0) + 1
        return usage

    def _image_containers(self, raw: Dict[str, Any], usage: Optional[Dict[str, int]]) -> int:
        count = raw.get('Containers')
        if isinstance(count, int) and count >= 0:
            return count
        return (usage or {}).get(raw.get('Id', ''), 0)

    def _connected_counts(self) -> Dict[str, int]:
        """Running containers attached to each network id."""
        counts: Dict[str, int] = {}
        for raw in self._raw_containers(all=False):
            networks = (raw.get('NetworkSettings') or {}).get('Networks') or {}
            for attachment in networks.values():
                net_id = (attachment or {}).get('NetworkID')
                if net_id:
                    counts[net_id] = counts.get(net_id, 0) + 1
        return counts

    def _network_containers(self, raw: Dict[str, Any], counts: Dict[str, int]) -> int:
        return max(len(raw.get('Containers') or {}), counts.get(raw.get('Id', ''), 0))

    # --- Listings ---

    @engine_call(TIMEOUT_LIST)
    def list_containers(self, all: bool = True, ctx: Context = None) -> List[ContainerInfo]:
        return [_to_container(raw) for raw in self._raw_containers(all=all)]

    @engine_call(TIMEOUT_LIST)
    def list_images(self, all: bool = False, ctx: Context = None) -> List[ImageInfo]:
        raw_images = list(self.api.images(all=all) or [])
        usage = None
        if any(not isinstance(r.get('Containers'), int) or r.get('Containers') < 0 for r in raw_images):
            usage = self._image_usage()
        result: List[ImageInfo] = []
        for raw in raw_images:
            result.extend(_to_images(raw, self._image_containers(raw, usage)))
        return result

    @engine_call(TIMEOUT_LIST)
    def list_volumes(self, ctx: Context = None) -> List[VolumeInfo]:
        volumes = (self.api.volumes() or {}).get('Volumes') or []
        used = self._mounted_volumes()
        return [_to_volume(raw, raw.get('Name') in used) for raw in volumes]

    @engine_call(TIMEOUT_LIST)
    def list_networks(self, ctx: Context = None) -> List[NetworkInfo]:
        counts = self._connected_counts()
        return [_to_network(raw, self._network_containers(raw, counts)) for raw in self.api.networks() or []]

    @engine_call(TIMEOUT_LIST)
    def dangling_images(self, ctx: Context = None) -> List[ImageInfo]:
        result = []
        for raw in self.api.images(filters={'dangling': True}) or []:
            full_id = raw.get('Id', '')
            result.append(ImageInfo(
                id=trim_image_id(full_id),
                full_id=full_id,
                repository="",
                tag="",
                size=raw.get('Size') or 0,
                created=parse_created(raw.get('Created')),
                containers=max(0, raw.get('Containers') or 0),
                dangling=True,
            ))
        return result

    @engine_call(TIMEOUT_LIST)
    def stopped_containers(self, ctx: Context = None) -> List[ContainerInfo]:
        raw = self._raw_containers(all=True, filters={'status': STOPPED_STATES})
        return [_to_container(c) for c in raw]

    @engine_call(TIMEOUT_LIST)
    def unused_volumes(self, ctx: Context = None) -> List[VolumeInfo]:
        volumes = (self.api.volumes(filters={'dangling': True}) or {}).get('Volumes') or []
        return [_to_volume(raw, False) for raw in volumes]

    def refresh_all(self, ctx: Optional[Context] = None) -> ResourceSnapshot:
        """
        Read every category. A failing category becomes a warning; the rest
        still return. Starting a new refresh cancels one still in flight.
        """
        scope = self.begin_refresh("all", ctx)
        snapshot = ResourceSnapshot()
        readers = [
            ("containers", lambda: self.list_containers(all=True, ctx=scope)),
            ("images", lambda: self.list_images(ctx=scope)),
            ("volumes", lambda: self.list_volumes(ctx=scope)),
            ("networks", lambda: self.list_networks(ctx=scope)),
        ]
        try:
            for kind, read in readers:
                try:
                    setattr(snapshot, kind, read())
                except CancelledError:
                    raise
                except OctoError as e:
                    logger.warning(f"Refresh of {kind} failed: {e}")
                    snapshot.warnings.append(f"{kind}: {e}")
        finally:
            self.finish_refresh("all", scope)
        return snapshot

    # --- Disk usage ---

    @engine_call(TIMEOUT_DISK_USAGE)
    def disk_usage(self, ctx: Context = None) -> DiskUsageInfo:
        """
        Per-category totals recomputed from the engine's records.

        Reclaimable: images no container uses, writable layers of containers
        that are not running, and build cache not in use. Volumes count
        toward the total only.
        """
        du = self.api.df() or {}
        info = DiskUsageInfo()

        for img in du.get('Images') or []:
            size = img.get('Size') or 0
            info.images_bytes += size
            if img.get('Containers', 0) == 0:
                info.reclaimable_bytes += size

        for ct in du.get('Containers') or []:
            size = ct.get('SizeRw') or 0
            info.containers_bytes += size
            if ct.get('State') != 'running':
                info.reclaimable_bytes += size

        for vol in du.get('Volumes') or []:
            size = (vol.get('UsageData') or {}).get('Size') or 0
            info.volumes_bytes += max(0, size)

        for bc in du.get('BuildCache') or []:
            size = bc.get('Size') or 0
            info.build_cache_bytes += size
            if not bc.get('InUse', False):
                info.reclaimable_bytes += size

        info.total_bytes = (info.images_bytes + info.containers_bytes
                            + info.volumes_bytes + info.build_cache_bytes)
        return info

    # --- Targeted deletion ---

    @engine_call(TIMEOUT_REMOVE, readonly=False)
    def remove_container(self, container_id: str, force: bool = False, ctx: Context = None) -> None:
        """
        Remove a container by short id, full id or name.

        The container list is fetched again right before removal: a container
        that has vanished raises NotFoundError, one that is now running raises
        StateChangedError unless `force` is set.
        """
        target = self._find_container(container_id)
        if not force and target.get('State') == 'running':
            raise StateChangedError(
                "container is running; refusing to remove without force", container_id
            )
        ctx.check()
        logger.info(f"Removing container {truncate_id(target['Id'])} (force={force})")
        self.api.remove_container(target['Id'], v=False, force=force)

    @engine_call(TIMEOUT_REMOVE, readonly=False)
    def remove_image(self, image_id: str, force: bool = False, ctx: Context = None) -> None:
        logger.info(f"Removing image {image_id} (force={force})")
        self.api.remove_image(image_id, force=force, noprune=False)

    @engine_call(TIMEOUT_REMOVE, readonly=False)
    def remove_volume(self, name: str, force: bool = False, ctx: Context = None) -> None:
        logger.info(f"Removing volume {name} (force={force})")
        self.api.remove_volume(name, force=force)

    @engine_call(TIMEOUT_REMOVE, readonly=False)
    def remove_network(self, network_id: str, ctx: Context = None) -> None:
        target = self._find_network(network_id)
        if target.get('Name') in SYSTEM_NETWORKS:
            raise ProtectedResourceError("cannot delete system networks", target.get('Name'))
        logger.info(f"Removing network {target.get('Name')}")
        self.api.remove_network(target['Id'])

    # --- Lifecycle ---

    @engine_call(TIMEOUT_ACTION, readonly=False)
    def start_container(self, container_id: str, ctx: Context = None) -> None:
        self.api.start(container_id)

    @engine_call(TIMEOUT_ACTION, readonly=False)
    def stop_container(self, container_id: str, ctx: Context = None) -> None:
        self.api.stop(container_id)

    @engine_call(TIMEOUT_ACTION, readonly=False)
    def restart_container(self, container_id: str, ctx: Context = None) -> None:
        self.api.restart(container_id)

    # --- Prunes ---

    @engine_call(TIMEOUT_PRUNE, readonly=False)
    def prune_containers(self, ctx: Context = None) -> int:
        report = self.api.prune_containers() or {}
        logger.info(f"Pruned {len(report.get('ContainersDeleted') or [])} containers")
        return report.get('SpaceReclaimed') or 0

    @engine_call(TIMEOUT_PRUNE, readonly=False)
    def prune_images(self, all: bool = False, ctx: Context = None) -> int:
        """all=False removes dangling images only; all=True also unreferenced ones."""
        filters = {'dangling': False} if all else None
        report = self.api.prune_images(filters=filters) or {}
        logger.info(f"Pruned {len(report.get('ImagesDeleted') or [])} images (all={all})")
        return report.get('SpaceReclaimed') or 0

    @engine_call(TIMEOUT_PRUNE, readonly=False)
    def prune_volumes(self, ctx: Context = None) -> int:
        report = self.api.prune_volumes() or {}
        logger.info(f"Pruned {len(report.get('VolumesDeleted') or [])} volumes")
        return report.get('SpaceReclaimed') or 0

    @engine_call(TIMEOUT_PRUNE, readonly=False)
    def prune_networks(self, ctx: Context = None) -> None:
        # The engine never prunes its predefined networks.
        report = self.api.prune_networks() or {}
        deleted = report.get('NetworksDeleted') or []
        logger.info(f"Pruned {len(deleted)} networks")
        protected = SYSTEM_NETWORKS.intersection(deleted)
        if protected:
            logger.error(f"Engine pruned system networks: {sorted(protected)}")

    @engine_call(TIMEOUT_PRUNE, readonly=False)
    def prune_build_cache(self, all: bool = False, ctx: Context = None) -> int:
        report = self.api.prune_builds(all=all) or {}
        logger.info(f"Pruned {len(report.get('CachesDeleted') or [])} build cache entries (all={all})")
        return report.get('SpaceReclaimed') or 0

    def prune_system(self, all: bool = False, volumes: bool = False,
                     ctx: Optional[Context] = None) -> List[PruneResult]:
        """
        Prune containers, images, volumes (only with volumes=True), networks and
        build cache in that order.

        A failing category records its error in its PruneResult and the next one
        still runs. Cancellation stops the sequence; the categories already
        pruned are returned with the cancelled one marked as failed.
        """
        steps = [
            ("containers", lambda: self.prune_containers(ctx=ctx)),
            ("images", lambda: self.prune_images(all=all, ctx=ctx)),
        ]
        if volumes:
            steps.append(("volumes", lambda: self.prune_volumes(ctx=ctx)))
        steps.append(("networks", lambda: self.prune_networks(ctx=ctx) or 0))
        steps.append(("build_cache", lambda: self.prune_build_cache(all=all, ctx=ctx)))

        results = []
        for resource, prune in steps:
            result = PruneResult(resource)
            results.append(result)
            try:
                result.reclaimed_bytes = prune()
            except CancelledError as e:
                logger.info(f"System prune cancelled at {resource}")
                result.error = str(e)
                break
            except OctoError as e:
                logger.warning(f"Pruning {resource} failed: {e}")
                result.error = str(e)
        return results

    # --- Dry runs ---

    @engine_call(TIMEOUT_LIST)
    def remove_container_dry_run(self, container_id: str, ctx: Context = None) -> ConfirmationInfo:
        target = self._find_container(container_id)
        name = strip_container_name(target.get('Names'))
        image = target.get('Image', '')
        state = target.get('State', '')
        info = ConfirmationInfo(
            tier=SafetyTier.LOW_RISK,
            title="Delete Container?",
            description=f"{state.capitalize()} container '{name}' ({image})",
            resources=[
                f"container: {name}",
                f"image: {image}",
                f"size: {format_bytes(target.get('SizeRw') or 0)}",
            ],
            reversible=True,
            undo_instructions=f"Can be recreated from image {image}",
        )
        if state == 'running':
            info.tier = SafetyTier.MODERATE
            info.warnings.append("Container is currently running")
        return info

    @engine_call(TIMEOUT_LIST)
    def remove_image_dry_run(self, image_id: str, ctx: Context = None) -> ConfirmationInfo:
        target = self._find_image(image_id)
        usage = None
        if not isinstance(target.get('Containers'), int) or target['Containers'] < 0:
            usage = self._image_usage()
        containers = self._image_containers(target, usage)
        tags = _repo_tags(target)
        name = tags[0] if tags else "<none>"
        size = target.get('Size') or 0
        info = ConfirmationInfo(
            tier=SafetyTier.LOW_RISK,
            title="Delete Image?",
            description=f"Image '{name}' ({format_bytes(size)})",
            resources=[f"image: {name}", f"size: {format_bytes(size)}", f"containers: {containers}"],
            reversible=True,
            undo_instructions="Can be pulled from registry",
        )
        if containers > 0:
            info.tier = SafetyTier.HIGH_RISK
            info.warnings.append(f"Image is used by {containers} container(s)")
        return info

    @engine_call(TIMEOUT_LIST)
    def remove_volume_dry_run(self, name: str, ctx: Context = None) -> ConfirmationInfo:
        target = self._find_volume(name)
        driver = target.get('Driver', 'local')
        info = ConfirmationInfo(
            tier=SafetyTier.LOW_RISK,
            title="Delete Volume?",
            description=f"Volume '{name}' ({driver})",
            resources=[f"volume: {name}", f"driver: {driver}"],
            reversible=False,
            undo_instructions="Data cannot be recovered",
        )
        if name in self._mounted_volumes():
            info.tier = SafetyTier.HIGH_RISK
            info.warnings.append("Volume is currently in use by container(s)")
        return info

    @engine_call(TIMEOUT_LIST)
    def remove_network_dry_run(self, network_id: str, ctx: Context = None) -> ConfirmationInfo:
        target = self._find_network(network_id)
        name = target.get('Name', '')
        driver = target.get('Driver', '')
        connected = self._network_containers(target, self._connected_counts())
        info = ConfirmationInfo(
            tier=SafetyTier.MODERATE,
            title="Delete Network?",
            description=f"Network '{name}' ({driver}, {connected} containers)",
            resources=[f"network: {name}", f"driver: {driver}", f"containers: {connected}"],
            reversible=False,
            undo_instructions="Network must be manually recreated",
        )
        if connected > 0:
            info.tier = SafetyTier.HIGH_RISK
            info.warnings.append(f"Network has {connected} connected container(s)")
        if name in SYSTEM_NETWORKS:
            info.tier = SafetyTier.BULK_DESTRUCTIVE
            info.warnings.append("Cannot delete system networks")
        return info

    @engine_call(TIMEOUT_LIST)
    def prune_containers_dry_run(self, ctx: Context = None) -> ConfirmationInfo:
        stopped = self._raw_containers(all=True, filters={'status': STOPPED_STATES})
        total = sum(c.get('SizeRw') or 0 for c in stopped)
        return ConfirmationInfo(
            tier=SafetyTier.BULK_DESTRUCTIVE,
            title="Prune Stopped Containers?",
            description=f"Remove {len(stopped)} stopped container(s), freeing {format_bytes(total)}",
            resources=[f"stopped containers: {len(stopped)}", f"total size: {format_bytes(total)}"],
            reversible=True,
            undo_instructions="Can be recreated from images",
            warnings=["This is a bulk operation"],
        )

    @engine_call(TIMEOUT_LIST)
    def prune_images_dry_run(self, all: bool = False, ctx: Context = None) -> ConfirmationInfo:
        raw_images = list(self.api.images(all=True) or [])
        usage = None
        if all and any(not isinstance(r.get('Containers'), int) or r.get('Containers') < 0 for r in raw_images):
            usage = self._image_usage()

        count, total = 0, 0
        for raw in raw_images:
            if all:
                selected = self._image_containers(raw, usage) == 0
            else:
                selected = not _repo_tags(raw)
            if selected:
                count += 1
                total += raw.get('Size') or 0

        kind = "unused images" if all else "dangling images"
        return ConfirmationInfo(
            tier=SafetyTier.BULK_DESTRUCTIVE,
            title="Prune Images?",
            description=f"Remove {count} {kind}, freeing {format_bytes(total)}",
            resources=[f"images to remove: {count}", f"space freed: {format_bytes(total)}"],
            reversible=True,
            undo_instructions="Can be pulled from registry",
            warnings=["This is a bulk operation"],
        )

    @engine_call(TIMEOUT_LIST)
    def prune_volumes_dry_run(self, ctx: Context = None) -> ConfirmationInfo:
        volumes = (self.api.volumes(filters={'dangling': True}) or {}).get('Volumes') or []
        return ConfirmationInfo(
            tier=SafetyTier.BULK_DESTRUCTIVE,
            title="Prune Unused Volumes?",
            description=f"Remove {len(volumes)} unused volume(s)",
            resources=[f"unused volumes: {len(volumes)}"],
            reversible=False,
            undo_instructions="Data cannot be recovered",
            warnings=["This is a bulk operation", "Volume data will be permanently deleted"],
        )

    @engine_call(TIMEOUT_LIST)
    def prune_networks_dry_run(self, ctx: Context = None) -> ConfirmationInfo:
        counts = self._connected_counts()
        targets = [
            raw.get('Name', '') for raw in self.api.networks() or []
            if raw.get('Name') not in SYSTEM_NETWORKS and self._network_containers(raw, counts) == 0
        ]
        return ConfirmationInfo(
            tier=SafetyTier.BULK_DESTRUCTIVE,
            title="Prune Unused Networks?",
            description=f"Remove {len(targets)} unused network(s)",
            resources=[f"unused networks: {len(targets)}"] + [f"network: {n}" for n in targets],
            reversible=False,
            undo_instructions="Networks must be manually recreated",
            warnings=["This is a bulk operation", "System networks (bridge, host, none) are never pruned"],
        )

    @engine_call(TIMEOUT_DISK_USAGE)
    def prune_build_cache_dry_run(self, all: bool = False, ctx: Context = None) -> ConfirmationInfo:
        entries = [bc for bc in (self.api.df() or {}).get('BuildCache') or [] if not bc.get('InUse', False)]
        total = sum(bc.get('Size') or 0 for bc in entries)
        scope = "all unused" if all else "dangling"
        return ConfirmationInfo(
            tier=SafetyTier.BULK_DESTRUCTIVE,
            title="Prune Build Cache?",
            description=f"Remove up to {len(entries)} {scope} build cache entries, freeing up to {format_bytes(total)}",
            resources=[f"cache entries: {len(entries)}", f"space freed: {format_bytes(total)}"],
            reversible=True,
            undo_instructions="Cache is rebuilt by the next build",
            warnings=["This is a bulk operation"],
        )

    # --- Metrics ---

    @engine_call(TIMEOUT_STATS)
    def get_container_stats(self, container_id: str, ctx: Context = None) -> ContainerMetrics:
        stats = self.api.stats(container_id, stream=False) or {}
        cpu_stats = stats.get('cpu_stats') or {}
        precpu_stats = stats.get('precpu_stats') or {}
        cpu_usage = (cpu_stats.get('cpu_usage') or {}).get('total_usage', 0)
        precpu_usage = (precpu_stats.get('cpu_usage') or {}).get('total_usage', 0)
        system_delta = cpu_stats.get('system_cpu_usage', 0) - precpu_stats.get('system_cpu_usage', 0)
        cpu_delta = cpu_usage - precpu_usage
        online_cpus = cpu_stats.get('online_cpus') or len((cpu_stats.get('cpu_usage') or {}).get('percpu_usage') or [])

        cpu_percent = 0.0
        if system_delta > 0 and cpu_delta > 0 and online_cpus > 0:
            cpu_percent = (cpu_delta / system_delta) * online_cpus * 100.0

        memory = stats.get('memory_stats') or {}
        mem_usage = memory.get('usage', 0)
        mem_limit = memory.get('limit', 0)

        net_rx = net_tx = 0
        for iface in (stats.get('networks') or {}).values():
            net_rx += iface.get('rx_bytes', 0)
            net_tx += iface.get('tx_bytes', 0)

        block_read = block_write = 0
        for entry in (stats.get('blkio_stats') or {}).get('io_service_bytes_recursive') or []:
            op = (entry.get('op') or '').lower()
            if op == 'read':
                block_read += entry.get('value', 0)
            elif op == 'write':
                block_write += entry.get('value', 0)

        return ContainerMetrics(
            container_id=container_id,
            cpu_percent=cpu_percent,
            memory_usage=mem_usage,
            memory_limit=mem_limit,
            memory_percent=(mem_usage / mem_limit * 100.0) if mem_limit > 0 else 0.0,
            network_rx=net_rx,
            network_tx=net_tx,
            block_read=block_read,
            block_write=block_write,
            pids=(stats.get('pids_stats') or {}).get('current', 0),
        )

    # --- Logs ---

    @engine_call(TIMEOUT_LOGS)
    def get_container_logs(self, container_id: str, tail: int = 500, ctx: Context = None) -> List[LogEntry]:
        return logstream.fetch_logs(self.api, container_id, tail, ctx)

    def stream_container_logs(self, container_id: str, ctx: Optional[Context] = None) -> logstream.LogStream:
        """Follow new log lines. The returned stream is already running; cancel() stops it."""
        return logstream.LogStream(self.api, container_id, ctx).start()
