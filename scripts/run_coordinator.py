#!/usr/bin/env python3
"""
Run the Proxy Coordinator.

Usage:
    ./venv/bin/python scripts/run_coordinator.py

Then test with:
    curl http://localhost:8000/health
    curl -X POST http://localhost:8000/register -H "Content-Type: application/json" \
      -d '{"id": "6f1c2a4e-0000-4000-8000-000000000001", "password": "p1", "mac_id": "d1", "api_key": ""}'
    curl http://localhost:8000/nodes
"""

import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import uvicorn
from proxy_coordinator.api_gateway import CoordinatorGateway, create_app
from proxy_coordinator.config import CoordinatorConfig


def main():
    """Run the coordinator server."""
    config = CoordinatorConfig.load()

    # Setup logging
    logging.basicConfig(
        level=config.log_level.upper(),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    print("\n" + "=" * 60)
    print("   Proxy Coordinator")
    print("=" * 60)
    print(f"\n   Starting server at http://{config.bind_address}")
    print("\n   Endpoints:")
    print("   - GET  /            - Help page")
    print("   - GET  /health      - Health check")
    print("   - POST /register    - Register proxy node")
    print("   - POST /login       - Get bearer token")
    print("   - GET  /ws/         - Node WebSocket")
    print("   - GET  /nodes       - List active nodes")
    print("\n" + "=" * 60)
    print("   Press Ctrl+C to stop")
    print("=" * 60 + "\n")

    app = create_app(CoordinatorGateway(config))
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
