"""
HTTP entrypoint for the archive pipeline.

The archive monitoring callback posts archive details to ``/archive``.
Processing runs in a background thread so the callback is acknowledged
straight away; completion is observable through ``metadata.json`` in the
blob bucket, exposed here by the ``/transcripts`` routes.

Configuration comes from the environment, see :mod:`archive_pipeline.config`.
"""

import asyncio
import json
import logging
import os
import threading
from typing import Optional

from flask import Flask, jsonify, request
from google.api_core import exceptions as api_exceptions

from .config import PipelineConfig
from .metadata import ArchiveMetadata
from .tasks import ArchiveProcessor

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = Flask(__name__)
processor: Optional[ArchiveProcessor] = None


def get_processor() -> ArchiveProcessor:
    global processor
    if processor is None:
        processor = ArchiveProcessor(PipelineConfig.from_env())
    return processor


def _run_in_background(metadata: ArchiveMetadata) -> threading.Thread:
    worker = threading.Thread(
        target=asyncio.run,
        args=(get_processor().process_archive(metadata),),
        name=f"archive-{metadata.id}",
        daemon=True,
    )
    worker.start()
    return worker


@app.route("/archive", methods=["POST"])
def archive_callback():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        logger.info(json.dumps({"event": "invalid_callback", "reason": "body is not an object"}))
        return "Expected a JSON object", 400
    logger.info(json.dumps({"event": "archive_callback", "archive": data.get("id"), "mode": data.get("outputMode")}))
    try:
        metadata = ArchiveMetadata.from_dict(data)
    except ValueError as exc:
        logger.info(json.dumps({"event": "invalid_callback", "reason": str(exc)}))
        return str(exc), 400
    _run_in_background(metadata)
    return "Accepted", 202


@app.route("/transcripts", methods=["GET"])
def list_transcripts():
    archive_ids = asyncio.run(get_processor().list_available_transcripts())
    return jsonify(archive_ids)


@app.route("/transcripts/<archive_id>", methods=["GET"])
def get_transcript(archive_id: str):
    try:
        content = asyncio.run(get_processor().get_transcript(archive_id))
    except api_exceptions.NotFound:
        logger.info(json.dumps({"event": "transcript_not_found", "archive": archive_id}))
        return "Transcript not found", 404
    return jsonify(content)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
