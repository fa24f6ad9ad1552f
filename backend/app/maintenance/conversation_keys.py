"""Rewrite stored role-pair conversation keys into their canonical order.

Older writers built ``Role:id|Role:id`` keys in sender-first order, so one
pair of people could end up with two keys. Listing compensates by merging on
read; this job removes the duplication at rest.

Usage: ``python -m app.maintenance.conversation_keys [--dry-run]``
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Dict, Optional, Sequence

from app.domain.messaging.exceptions import InvalidParticipants
from app.domain.messaging.keys import normalize_conversation_key
from app.domain.messaging.repo import MessagingRepository
from app.infra.postgres import close_pool, init_pool
from app.obs import metrics as obs_metrics

log = logging.getLogger(__name__)

_PAIR_SEPARATOR = "|"


async def normalize_historical_keys(
	repository: MessagingRepository | None = None,
	*,
	dry_run: bool = False,
) -> Dict[str, int]:
	repo = repository or MessagingRepository()
	report: Dict[str, int] = {"scanned": 0, "rewritten": 0, "messages_moved": 0, "skipped": 0}
	for key in await repo.distinct_message_conversation_ids():
		if _PAIR_SEPARATOR not in key:
			continue
		report["scanned"] += 1
		try:
			canonical = normalize_conversation_key(key)
		except (ValueError, InvalidParticipants):
			log.warning("conversation_key_unparseable", extra={"conversation_key": key})
			report["skipped"] += 1
			continue
		if canonical == key:
			continue
		report["rewritten"] += 1
		if dry_run:
			continue
		report["messages_moved"] += await repo.rewrite_conversation_id(key, canonical)
	if not dry_run and report["rewritten"]:
		obs_metrics.inc_conversation_keys_rewritten(report["rewritten"])
	log.info("conversation_keys_normalized", extra={**report, "dry_run": dry_run})
	return report


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Normalize legacy conversation keys")
	parser.add_argument("--dry-run", action="store_true", help="Report rewrites without applying them")
	return parser.parse_args(argv)


async def _run(dry_run: bool) -> Dict[str, int]:
	await init_pool()
	try:
		return await normalize_historical_keys(dry_run=dry_run)
	finally:
		await close_pool()


def main(argv: Optional[Sequence[str]] = None) -> None:
	args = _parse_args(argv)
	report = asyncio.run(_run(args.dry_run))
	print(json.dumps(report, sort_keys=True))


if __name__ == "__main__":
	main()
