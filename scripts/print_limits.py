#!/usr/bin/env python3
"""Print indexing, upload and API limits (from config and main app). Run from repo root: python scripts/print_limits.py"""
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from app.core.config import settings
from app.ingest.chunker import CHUNK_CONFIG
from app.main import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS


def main():
    """Print job, indexing and upload limits (EMBEDDING_BATCH_SIZE, COMMIT_LOG_LIMIT, MAX_AUDIO_MB, chunk sizes, rate limit)."""
    print("Indexing & API limits")
    print("---------------------")
    print(f"  EMBEDDING_BATCH_SIZE  = {settings.embedding_batch_size} (chunk documents per vector-store insert)")
    print(f"  COMMIT_LOG_LIMIT      = {settings.commit_log_limit} (most recent commits read per index run)")
    print(f"  JOB_RETENTION_SECONDS = {settings.job_retention_seconds} (finished jobs visible at /jobs/{{id}})")
    print(f"  RETRIEVE_TOP_K        = {settings.retrieve_top_k} (default retrieval top_k)")
    print(f"  MAX_AUDIO_MB          = {settings.max_audio_mb} MB ({', '.join(settings.allowed_audio_formats)})")
    for category, cfg in CHUNK_CONFIG.items():
        print(f"  chunk[{category}]".ljust(24) + f"= {cfg.chunk_size} chars, overlap {cfg.chunk_overlap}")
    print(f"  Rate limit            = {RATE_LIMIT_REQUESTS} requests / {RATE_LIMIT_WINDOW_SECONDS} s (per client IP)")
    print("")
    print("Env: EMBEDDING_BATCH_SIZE, COMMIT_LOG_LIMIT, JOB_RETENTION_SECONDS, RETRIEVE_TOP_K, MAX_AUDIO_MB (see .env.example)")


if __name__ == "__main__":
    main()
