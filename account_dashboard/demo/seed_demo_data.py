# account_dashboard/demo/seed_demo_data.py

from account_dashboard.storage.store import KeyValueStore


def seed_demo_data(store: KeyValueStore, date: str) -> int:
    """Write a small demo fleet: two accounts, three API keys and their usage.

    acct-alpha has a recorded daily cost; acct-beta only has API-key costs;
    acct-gamma only has per-model token buckets.

    Returns:
        Number of records written
    """
    records = {
        "claude_account:acct-alpha": {
            "id": "acct-alpha", "name": "Alpha", "isActive": "true", "status": "active",
        },
        "claude_account:acct-beta": {
            "id": "acct-beta", "name": "Beta", "isActive": "true", "status": "active",
        },
        "claude_account:acct-gamma": {
            "id": "acct-gamma", "name": "Gamma", "isActive": "true", "status": "active",
        },
        "apikey:key-1": {
            "id": "key-1", "name": "ci-bot", "claudeAccountId": "acct-beta", "isActive": "true",
        },
        "apikey:key-2": {
            "id": "key-2", "name": "docs-summarizer", "claudeAccountId": "group:acct-beta",
            "isActive": "true", "dailyCostLimit": "25",
        },
        "apikey:key-3": {
            "id": "key-3", "name": "analytics", "accountId": "acct-alpha", "isActive": "false",
        },
        f"account_usage:daily:acct-alpha:{date}": {
            "requests": "42", "inputTokens": "120000", "outputTokens": "30000",
            "allTokens": "150000", "cost": "0.81",
        },
        f"usage:daily:key-1:{date}": {
            "requests": "10", "inputTokens": "40000", "outputTokens": "8000", "cost": "0.24",
        },
        f"usage:daily:key-2:{date}": {
            "requests": "5", "inputTokens": "10000", "outputTokens": "2000",
            "ephemeral5mTokens": "1000", "ephemeral1hTokens": "1000",
        },
        f"apikey_usage:daily:key-2:{date}": {
            "cost": "0.061",
        },
        f"account_usage:model:daily:acct-gamma:claude-sonnet-4-20250514:{date}": {
            "inputTokens": "1000000", "outputTokens": "500000", "requests": "12",
        },
        f"account_usage:model:daily:acct-gamma:claude-3-5-haiku-20241022:{date}": {
            "totalInputTokens": "200000", "totalOutputTokens": "50000",
            "cacheReadTokens": "100000", "requests": "30",
        },
    }

    for key, mapping in records.items():
        store.hset(key, mapping)
    store.set(f"usage:cost:daily:key-1:{date}", "0.24")
    return len(records) + 1
