#!/usr/bin/env python3
"""
Sandbox entrypoint for repo-threat-scanner.
Reads scan parameters from stdin JSON, scans the repository, outputs JSON to stdout.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from pydantic import ValidationError

from repo_threat_scanner.config import ScanConfig
from repo_threat_scanner.git_utils import CloneOptions
from repo_threat_scanner.scanner import scan_local_path, scan_repository

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main() -> None:
    try:
        input_data = json.load(sys.stdin)
    except json.JSONDecodeError as e:
        print(json.dumps({"error": f"Invalid JSON input: {e}"}))
        sys.exit(1)

    if not isinstance(input_data, dict):
        print(json.dumps({"error": "Input must be a JSON object"}))
        sys.exit(1)

    repo_url = input_data.get("repo_url")
    local_path = input_data.get("path") or input_data.get("directory")

    if bool(repo_url) == bool(local_path):
        print(
            json.dumps(
                {
                    "error": "Provide exactly one of 'repo_url' or 'path'/'directory'.",
                    "examples": {
                        "remote": {"repo_url": "https://github.com/user/repo"},
                        "local": {"path": "."},
                    },
                }
            )
        )
        sys.exit(1)

    try:
        config = ScanConfig(**input_data.get("options", {}))
    except (ValidationError, TypeError) as e:
        print(json.dumps({"error": f"Invalid options: {e}"}))
        sys.exit(1)

    try:
        if repo_url:
            clone_options = CloneOptions(
                depth=input_data.get("depth", 1),
                branch=input_data.get("branch"),
            )
            result = asyncio.run(scan_repository(repo_url, config, clone_options))
        else:
            result = asyncio.run(scan_local_path(local_path, config))
        print(result.model_dump_json(by_alias=True))
    except Exception as e:
        print(json.dumps({"error": str(e)}))
        sys.exit(1)


if __name__ == "__main__":
    main()
