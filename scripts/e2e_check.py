#!/usr/bin/env python3
"""End-to-end check for a running health-analytics-server.

Exercises the major endpoints against a live server.

Usage:
    # Set environment variables:
    export API_KEY="hal_dev_key"
    export USER_ID="e2e-user"
    export BASE_URL="http://localhost:8000"

    # Run checks:
    uv run python scripts/e2e_check.py
"""

import asyncio
import os
import sys
from datetime import UTC, datetime, timedelta

import httpx

# Configuration from environment
API_KEY = os.environ.get("API_KEY", "hal_dev_key")
USER_ID = os.environ.get("USER_ID", "e2e-user")
BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000")
API_BASE = f"{BASE_URL}/api/v1"
HEADERS = {"X-API-Key": API_KEY}


async def check_health() -> bool:
    """Health endpoint (no auth required)."""
    async with httpx.AsyncClient() as client:
        r = await client.get(f"{BASE_URL}/health")
        if r.status_code != 200:
            print(f"  FAIL: Health check returned {r.status_code}")
            return False
        data = r.json()
        if data.get("status") != "ok":
            print(f"  FAIL: Health status is {data.get('status')}")
            return False
        print(f"  OK: Server up, version {data.get('version')}")
        return True


async def check_unauthorized() -> bool:
    """Endpoints require the API key when one is configured."""
    async with httpx.AsyncClient() as client:
        r = await client.get(f"{API_BASE}/users/{USER_ID}/goals")
        if r.status_code != 401:
            print(f"  FAIL: Expected 401, got {r.status_code}")
            return False
        print("  OK: Unauthorized request correctly rejected")
        return True


async def check_data_and_scores() -> bool:
    """Post a day of data and score it."""
    now = datetime.now(UTC)
    async with httpx.AsyncClient(headers=HEADERS) as client:
        r = await client.post(
            f"{API_BASE}/users/{USER_ID}/metrics",
            json={
                "metrics": [
                    {"metric_type": "steps", "value": 9500},
                    {"metric_type": "heart_rate", "value": 64},
                    {"metric_type": "weight", "value": 78.2},
                ]
            },
        )
        if r.status_code != 201:
            print(f"  FAIL: metrics returned {r.status_code}")
            return False
        print(f"  OK: metrics - {r.json()['stored']} stored")

        r = await client.post(
            f"{API_BASE}/users/{USER_ID}/meals",
            json={"logged_at": now.isoformat(), "calories": 700, "protein_g": 45},
        )
        if r.status_code != 201:
            print(f"  FAIL: meals returned {r.status_code}")
            return False

        r = await client.post(f"{API_BASE}/users/{USER_ID}/scores/calculate", json={})
        if r.status_code != 200:
            print(f"  FAIL: scores/calculate returned {r.status_code}")
            return False
        print(f"  OK: scores - overall {r.json()['overall']}")
    return True


async def check_analytics_endpoints() -> bool:
    """Predictions, patterns and reports."""
    today = datetime.now(UTC).date()
    async with httpx.AsyncClient(headers=HEADERS) as client:
        r = await client.post(
            f"{API_BASE}/users/{USER_ID}/predictions",
            json={
                "prediction_type": "health_risk",
                "target_date": (today + timedelta(days=30)).isoformat(),
            },
        )
        if r.status_code != 201:
            print(f"  FAIL: predictions returned {r.status_code}")
            return False
        print(f"  OK: predictions - risk {r.json()['predicted_value']}")

        r = await client.post(
            f"{API_BASE}/users/{USER_ID}/patterns/analyze",
            json={"pattern_type": "sleep_nutrition", "analysis_period": "weekly"},
        )
        if r.status_code != 200:
            print(f"  FAIL: patterns/analyze returned {r.status_code}")
            return False
        print(f"  OK: patterns - significance {r.json()['significance']}")

        r = await client.post(
            f"{API_BASE}/users/{USER_ID}/reports",
            json={
                "report_type": "weekly_summary",
                "period_start": (today - timedelta(days=6)).isoformat(),
                "period_end": today.isoformat(),
            },
        )
        if r.status_code != 201:
            print(f"  FAIL: reports returned {r.status_code}")
            return False
        print("  OK: reports - weekly summary generated")

        # Unknown report id returns 404
        r = await client.get(f"{API_BASE}/users/{USER_ID}/reports/not-a-report")
        if r.status_code != 404:
            print(f"  FAIL: unknown report should return 404, got {r.status_code}")
            return False
        print("  OK: unknown report returns 404")
    return True


async def check_monitoring() -> bool:
    """Start, feed and stop a monitoring session."""
    async with httpx.AsyncClient(headers=HEADERS) as client:
        r = await client.post(
            f"{API_BASE}/users/{USER_ID}/monitoring/sessions",
            json={"device_id": "e2e-watch", "sampling_rate_ms": 1000},
        )
        if r.status_code != 201:
            print(f"  FAIL: monitoring/sessions returned {r.status_code}")
            return False
        session_id = r.json()["id"]

        r = await client.post(
            f"{API_BASE}/monitoring/sessions/{session_id}/samples",
            json={"samples": [{"metric_type": "heart_rate", "value": 72}]},
        )
        if r.status_code != 200:
            print(f"  FAIL: samples returned {r.status_code}")
            return False

        await asyncio.sleep(2)
        r = await client.get(f"{API_BASE}/users/{USER_ID}/monitoring/dashboard")
        total = r.json()["summary"]["total_metrics"]
        print(f"  OK: monitoring - {total} samples ingested")

        r = await client.post(f"{API_BASE}/monitoring/sessions/{session_id}/stop")
        if r.json().get("status") != "completed":
            print(f"  FAIL: stop left session {r.json().get('status')}")
            return False
    return True


async def check_export() -> bool:
    """CSV export download."""
    async with httpx.AsyncClient(headers=HEADERS) as client:
        r = await client.get(f"{API_BASE}/users/{USER_ID}/export?format=csv&type=health_scores")
        if r.status_code != 200:
            print(f"  FAIL: export returned {r.status_code}")
            return False
        print(f"  OK: export - {len(r.text.splitlines())} CSV lines")
    return True


async def check_openapi() -> bool:
    """OpenAPI schema endpoint."""
    async with httpx.AsyncClient() as client:
        r = await client.get(f"{BASE_URL}/schema/openapi.json")
        if r.status_code != 200:
            print(f"  FAIL: OpenAPI schema returned {r.status_code}")
            return False
        schema = r.json()
        paths = len(schema.get("paths", {}))
        print(f"  OK: OpenAPI schema - {paths} paths documented")
    return True


async def main() -> int:
    """Run all E2E checks."""
    print("=" * 60)
    print("Health Analytics Server - End-to-End Checks")
    print("=" * 60)
    print(f"Base URL: {BASE_URL}")
    print(f"User ID: {USER_ID}")
    print("=" * 60)

    checks = [
        ("Health Check", check_health),
        ("Authorization", check_unauthorized),
        ("Data and Scores", check_data_and_scores),
        ("Analytics Endpoints", check_analytics_endpoints),
        ("Monitoring", check_monitoring),
        ("Export", check_export),
        ("OpenAPI Schema", check_openapi),
    ]

    passed = 0
    failed = 0

    for name, check in checks:
        print(f"\n[{name}]")
        try:
            if await check():
                passed += 1
            else:
                failed += 1
        except Exception as e:
            print(f"  ERROR: {e}")
            failed += 1

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
