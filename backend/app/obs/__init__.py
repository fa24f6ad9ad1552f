"""Logging, metrics and health probes for the messaging service."""

from __future__ import annotations

from fastapi import FastAPI

from app.obs import logging as obs_logging
from app.obs import middleware
from app.settings import settings


def init(app: FastAPI) -> None:
	"""Configure JSON logging and attach HTTP instrumentation once per app."""
	if not settings.obs_enabled or getattr(app.state, "obs_installed", False):
		return
	obs_logging.configure_logging().info(
		"obs_init",
		extra={"log_level": settings.obs_log_level, "sampling": settings.obs_log_sampling_rate_info},
	)
	middleware.install(app)
	app.state.obs_installed = True


__all__ = ["init"]
