"""Pipeline runner: forward stages with compensation on failure."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from pydantic import BaseModel, Field

from .compensation import COMPENSATION_STEPS, Release, compensate
from .config import BuildConfig
from .context import BuildContext
from .host import Host, ImageTool, ImgadmTool, SystemHost
from .stages import FORWARD_STAGES, Stage

logger = logging.getLogger(__name__)


class Pipeline(BaseModel):
    """An ordered list of stages plus the cleanup to run if one fails."""

    model_config = {"arbitrary_types_allowed": True}

    name: str = "build"
    stages: list[Stage] = Field(default_factory=lambda: list(FORWARD_STAGES))
    cleanup: list[Release] = Field(default_factory=lambda: list(COMPENSATION_STEPS))

    def __iter__(self) -> Iterator[Stage]:
        return iter(self.stages)

    def run(self, ctx: BuildContext) -> None:
        """Run every stage in order.

        The first failure stops the pipeline, releases whatever the context
        says is still held, and is then re-raised unchanged.
        """
        logger.debug("Running pipeline '%s'", self.name)
        for stage in self.stages:
            logger.debug("Entering stage '%s'", stage.name)
            try:
                stage(ctx)
            except BaseException as exc:
                logger.error("Stage '%s' failed: %s", stage.name, exc)
                warnings = compensate(ctx, tuple(self.cleanup))
                if warnings:
                    logger.warning("Cleanup finished with %d warning(s)", len(warnings))
                raise


def build(
    config: BuildConfig,
    *,
    host: Host | None = None,
    images: ImageTool | None = None,
    pipeline: Pipeline | None = None,
) -> BuildContext:
    """Build an image from config and return the finished context.

    Raises the first failing stage's error after cleaning up.
    """
    ctx = BuildContext(
        config,
        host=host if host is not None else SystemHost(),
        images=images if images is not None else ImgadmTool(),
    )
    logger.info("Starting build for %s (%s)", config.manifest.name, config.manifest.version)
    (pipeline or Pipeline()).run(ctx)
    return ctx
