"""Ordered composition of the performance transforms."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from . import transforms
from .config import CdnConfig
from .transforms import Transform
from .utils import logger as base_logger


@dataclass
class Stage:
    """One named transform and whether the current configuration enables it."""

    name: str
    func: Transform
    enabled: bool = True


class TransformPipeline:
    """Runs the transform stages in their fixed order.

    Progressive-loading mode replaces the standard stages with a single
    aggressive shell transform, so the two never mutate the same document.
    """

    def __init__(
        self,
        config: CdnConfig,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.config = config
        self.logger = logger or base_logger

    def stages(self) -> List[Stage]:
        config = self.config
        stages = [
            Stage("script_error_handling", transforms.add_script_error_handling),
            Stage("content_security_policy", transforms.fix_content_security_policy),
        ]
        if config.progressive_loading_enabled:
            stages.append(Stage("force_progressive_loading", transforms.force_progressive_loading))
            return stages
        stages.extend(
            [
                Stage("network_payloads", transforms.optimize_network_payloads),
                Stage("html_streaming", transforms.implement_html_streaming),
                Stage(
                    "images_advanced",
                    transforms.optimize_images_advanced,
                    config.image_optimization_enabled,
                ),
                Stage(
                    "javascript",
                    transforms.optimize_javascript,
                    config.js_optimization_enabled,
                ),
                Stage("analytics", transforms.optimize_analytics),
                Stage(
                    "critical_path",
                    transforms.optimize_critical_path,
                    config.critical_path_enabled,
                ),
                Stage("tracking", transforms.optimize_tracking),
                Stage("layout_shift", transforms.fix_layout_shift),
                Stage("above_the_fold", transforms.prioritize_above_the_fold),
                Stage("progressive_loading", transforms.implement_progressive_loading),
            ]
        )
        return stages

    def run(self, html: str) -> str:
        if not html:
            return html
        self.logger.info("Performance optimization started")
        for stage in self.stages():
            if not stage.enabled:
                continue
            try:
                html = stage.func(html)
            except Exception:  # pylint: disable=broad-except
                self.logger.exception("Transform %s failed; keeping previous output", stage.name)
                continue
            self.logger.debug("Applied transform %s", stage.name)
        self.logger.info("Performance optimization completed")
        return html
