#!/usr/bin/env python3
"""
Smoke test for a running dashboard API.
Start the server first: carecoord-api
Then run this: python scripts/smoke_api.py
"""

import json
import os

import requests

BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")


def banner(title):
    print("\n" + "=" * 50)
    print(f"TEST: {title}")
    print("=" * 50)


def show(response, limit=None):
    print(f"Status Code: {response.status_code}")
    text = json.dumps(response.json(), indent=2)
    if limit and len(text) > limit:
        text = text[:limit] + "\n... (truncated)"
    print(f"Response: {text}")


def check_health():
    banner("Health Check")
    response = requests.get(f"{BASE_URL}/health")
    show(response)
    return response.status_code == 200


def check_index():
    banner("API Info")
    response = requests.get(f"{BASE_URL}/")
    show(response)
    return response.status_code == 200


def check_login_invalid():
    banner("Login with Invalid Credentials")
    response = requests.post(f"{BASE_URL}/api/auth/login", json={"api_key": "invalid-key-123"})
    show(response)
    return response.status_code == 401


def login(api_key):
    banner("Login")
    response = requests.post(f"{BASE_URL}/api/auth/login", json={"api_key": api_key})
    show(response)
    return response.json().get("token") if response.status_code == 200 else None


def check_snapshot_without_token():
    banner("Snapshot Without Token")
    response = requests.get(f"{BASE_URL}/api/snapshot")
    show(response)
    return response.status_code == 401


def check_snapshot(token, refresh=False):
    banner("Refresh Snapshot" if refresh else "Get Snapshot")
    headers = {"Authorization": f"Bearer {token}"}
    if refresh:
        response = requests.post(f"{BASE_URL}/api/snapshot/refresh", headers=headers)
    else:
        response = requests.get(f"{BASE_URL}/api/snapshot", headers=headers)
    show(response, limit=1500)
    if response.status_code == 200:
        snapshot = response.json()["snapshot"]
        print(f"Patients: {len(snapshot['patients'])}")
        print(f"Appointments today: {len(snapshot['appointments_today'])}")
        print(f"Partial: {snapshot['partial']} {snapshot['failed_sections']}")
    return response.status_code == 200


def check_profile(token):
    banner("Get User Profile")
    response = requests.get(f"{BASE_URL}/api/user/profile", headers={"Authorization": f"Bearer {token}"})
    show(response)
    return response.status_code == 200


def check_logout(token):
    banner("Logout")
    response = requests.post(f"{BASE_URL}/api/auth/logout", headers={"Authorization": f"Bearer {token}"})
    show(response)
    return response.status_code == 200


def main():
    print("=" * 50)
    print("Dashboard API Smoke Test")
    print("=" * 50)
    print(f"Base URL: {BASE_URL}")

    api_key = os.getenv("API_KEY") or input("Enter your access key: ").strip()
    if not api_key:
        print("ERROR: access key is required")
        return

    results = {}
    try:
        results["Health Check"] = check_health()
        results["API Info"] = check_index()
        results["Login Invalid"] = check_login_invalid()
        results["Snapshot Without Token"] = check_snapshot_without_token()

        token = login(api_key)
        results["Login Valid"] = token is not None
        if token:
            results["Get Profile"] = check_profile(token)
            results["Get Snapshot"] = check_snapshot(token)
            results["Refresh Snapshot"] = check_snapshot(token, refresh=True)
            results["Logout"] = check_logout(token)
    except requests.exceptions.ConnectionError:
        print("\nERROR: Could not connect to API server.")
        print(f"Make sure the server is running at {BASE_URL}")
        return

    print("\n" + "=" * 50)
    print("SUMMARY")
    print("=" * 50)
    for name, passed in results.items():
        print(f"  {'PASS' if passed else 'FAIL'}  {name}")
    print(f"\n{sum(results.values())}/{len(results)} passed")


if __name__ == "__main__":
    main()
