"""Image update detection and the persisted update record."""

import asyncio
import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from ..core.batch import BatchError, parallel
from ..core.settings import EngineSettings
from ..core.subprocess_manager import SubprocessManager
from ..models.update import ImageDigests, UpdateCheckRecord
from .stack_registry import StackRegistry

logger = structlog.get_logger()

LOCAL_IMAGE_FORMAT = "{{.Id}}|{{.Os}}|{{.Architecture}}"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _config_digest(document: dict[str, Any]) -> str | None:
    for key in ("SchemaV2Manifest", "OCIManifest"):
        manifest = document.get(key)
        if isinstance(manifest, dict):
            digest = (manifest.get("config") or {}).get("digest")
            if digest:
                return digest
    return (document.get("config") or {}).get("digest")


def remote_config_digest(manifest_output: str, os_name: str = "linux", arch: str = "amd64") -> str | None:
    """Config digest from ``docker manifest inspect -v`` output.

    A manifest list yields one entry per platform; only the entry matching the
    local platform is used. Without one there is nothing to compare against.
    """
    try:
        document = json.loads(manifest_output)
    except json.JSONDecodeError:
        return None

    if isinstance(document, dict):
        return _config_digest(document)
    if not isinstance(document, list) or not document:
        return None

    entries = [entry for entry in document if isinstance(entry, dict)]
    for entry in entries:
        platform = (entry.get("Descriptor") or {}).get("platform") or {}
        if platform.get("os") == os_name and platform.get("architecture") == arch:
            return _config_digest(entry)
    return None


class UpdateRecordStore:
    """JSON file holding the last :class:`UpdateCheckRecord`."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def load(self) -> UpdateCheckRecord | None:
        if not await asyncio.to_thread(self.path.exists):
            return None
        try:
            content = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            return UpdateCheckRecord.model_validate(json.loads(content))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Ignoring unreadable update record", path=str(self.path), error=str(e))
            return None

    async def save(self, record: UpdateCheckRecord) -> None:
        """Overwrite the record as a whole."""

        def _write() -> None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(record.to_document(), indent=2), encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error("Failed to persist update record", path=str(self.path), error=str(e))


class UpdateChecker:
    """Compares local image ids with remote config digests per stack."""

    def __init__(
        self,
        runner: SubprocessManager,
        registry: StackRegistry,
        store: UpdateRecordStore,
        settings: EngineSettings,
        clock_ms: Callable[[], int] = _epoch_ms,
    ):
        self.runner = runner
        self.registry = registry
        self.store = store
        self.settings = settings
        self._clock_ms = clock_ms
        self._record: UpdateCheckRecord | None = None
        self._lock = asyncio.Lock()

    @property
    def flags(self) -> dict[str, bool]:
        return self._record.flags() if self._record else {}

    @property
    def last_check(self) -> int | None:
        return self._record.last_check if self._record else None

    async def load_status(self) -> UpdateCheckRecord | None:
        self._record = await self.store.load()
        return self._record

    def has_update(self, stack_name: str) -> bool:
        return self.flags.get(stack_name, False)

    def should_check(self) -> bool:
        if self.last_check is None:
            return True
        age_ms = self._clock_ms() - self.last_check
        return age_ms > self.settings.update_check_max_age * 1000

    async def check(self) -> UpdateCheckRecord:
        """Check every image of every known stack and persist the outcome."""
        async with self._lock:
            stacks = list(self.registry.stacks.values())
            images = list(dict.fromkeys(image for stack in stacks for image in stack.images))
            logger.info("Checking images for updates", stacks=len(stacks), images=len(images))

            results = await parallel(images, self.inspect_image, self.settings.image_check_concurrency)
            updated: set[str] = set()
            for image, result in zip(images, results, strict=True):
                if isinstance(result, BatchError):
                    logger.warning("Image check failed", image=image, error=str(result.error))
                elif result.has_update:
                    updated.add(image)

            flags = {stack.name: any(image in updated for image in stack.images) for stack in stacks}
            record = UpdateCheckRecord.from_flags(self._clock_ms(), flags)
            await self.store.save(record)
            self._record = record

            logger.info(
                "Update check complete",
                updates=sorted(name for name, flag in flags.items() if flag),
            )
            return record

    async def inspect_image(self, image: str) -> ImageDigests:
        """Local id and remote config digest for ``image``.

        An image missing locally yields empty digests.

        Raises:
            ComposeCommandError: If the registry lookup fails
        """
        local = await self.runner.run_command(
            ["docker", "image", "inspect", "--format", LOCAL_IMAGE_FORMAT, image], suppress_error=True
        )
        if not local.success:
            return ImageDigests(image=image)

        local_id, _, platform = local.data.strip().partition("|")
        os_name, _, arch = platform.partition("|")

        remote = await self.runner.run_command(
            ["docker", "manifest", "inspect", "-v", image], suppress_error=True
        )
        if not remote.success:
            # Registry unreachable or image unknown there; check() logs it
            remote.raise_error()

        return ImageDigests(
            image=image,
            local=local_id or None,
            remote=remote_config_digest(remote.data, os_name or "linux", arch or "amd64"),
        )

    def status(self) -> dict[str, Any]:
        return {
            "last_check": self.last_check,
            "due": self.should_check(),
            "updates": self.flags,
        }
