import argparse
import concurrent.futures
from decimal import Decimal
import json
import time
import urllib.error
import urllib.request


def call(method: str, url: str, token: str, payload: dict | None = None, timeout: float = 5.0) -> tuple[int, dict]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    headers = {"Content-Type": "application/json"}
    if token:
        headers["X-Service-Token"] = token
    request = urllib.request.Request(url, data=data, headers=headers, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.status, json.loads(response.read().decode("utf-8") or "{}")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        return exc.code, json.loads(body) if body.startswith("{") else {"detail": body}


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Hammer one reward balance with concurrent credits and settles, then check totals"
    )
    parser.add_argument("--base-url", default="http://127.0.0.1:8000/api/v1")
    parser.add_argument("--service-token", default="")
    parser.add_argument("--workers", type=int, default=16)
    parser.add_argument("--operations", type=int, default=400)
    args = parser.parse_args()

    telegram_id = int(time.time() * 1000) % 10_000_000_000
    status, user = call("POST", f"{args.base_url}/users", args.service_token, {"telegram_id": telegram_id})
    if status != 201:
        raise SystemExit(f"user creation failed: {status} {user}")
    rewards_url = f"{args.base_url}/rewards/{user['id']}"

    def operation(index: int) -> tuple[str, int]:
        kind = "credit" if index % 2 == 0 else "settle"
        code, _ = call("POST", f"{rewards_url}/{kind}", args.service_token, {"amount": "1"})
        return kind, code

    credited = 0
    settled = 0
    rejected = 0
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, args.workers)) as executor:
        for kind, code in executor.map(operation, range(max(1, args.operations))):
            if code == 200:
                credited += kind == "credit"
                settled += kind == "settle"
            else:
                rejected += 1

    _, balance = call("GET", rewards_url, args.service_token)
    total_paid = Decimal(str(balance["total_paid"]))
    total_unpaid = Decimal(str(balance["total_unpaid"]))

    print("Contention Check Result")
    print(f"user_id={user['id']}")
    print(f"credits_applied={credited}")
    print(f"settles_applied={settled}")
    print(f"requests_rejected={rejected}")
    print(f"total_paid={total_paid}")
    print(f"total_unpaid={total_unpaid}")
    consistent = total_paid == settled and total_paid + total_unpaid == credited
    print(f"consistent={consistent}")
    if not consistent:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
