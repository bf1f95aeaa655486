"""Central registry for the Redis Lua scripts used by the ledger.

The scripts are registered at application startup and run with EVALSHA.
Each returns a two-element array whose first element is a status code:

    - 0: Nothing written. For "create_if_absent" the key already existed and
         the second element is its current value. For "commit_ledger_writes"
         the transaction was applied before and the second element is the
         result recorded then.

    - 1: Written. The second element is the stored value (the new record for
         "create_if_absent", the transaction result for "commit_ledger_writes").

    - 2: Conflict. One of the records changed since it was read, or a record
         expected to be new already exists. Nothing was written; the second
         element is the offending key.

"commit_ledger_writes" layout:
    KEYS[1]     transaction record key (tx:{hash})
    KEYS[2..n]  account and channel keys written by the transaction
    ARGV[1]     result JSON to record for the transaction
    ARGV[2i-2]  version read for KEYS[i], or '' if the record must not exist
    ARGV[2i-1]  new JSON for KEYS[i], or '' to delete it
"""

from __future__ import annotations

from .storage import KeyValueStore

LEDGER_SCRIPTS = {
    "create_if_absent": """
        if redis.call('EXISTS', KEYS[1]) == 1 then
            return {0, redis.call('GET', KEYS[1])}
        end
        redis.call('SET', KEYS[1], ARGV[1])
        return {1, ARGV[1]}
    """,
    "commit_ledger_writes": """
        local tx_key = KEYS[1]
        local applied = redis.call('GET', tx_key)
        if applied then
            return {0, applied}
        end

        for i = 2, #KEYS do
            local expected = ARGV[2 * i - 2]
            local current = redis.call('GET', KEYS[i])
            if expected == '' then
                if current then
                    return {2, KEYS[i]}
                end
            else
                if not current then
                    return {2, KEYS[i]}
                end
                local version = cjson.decode(current)['version'] or 0
                if tonumber(version) ~= tonumber(expected) then
                    return {2, KEYS[i]}
                end
            end
        end

        for i = 2, #KEYS do
            local new_val = ARGV[2 * i - 1]
            if new_val == '' then
                redis.call('DEL', KEYS[i])
            else
                redis.call('SET', KEYS[i], new_val)
            end
        end
        redis.call('SET', tx_key, ARGV[1])
        return {1, ARGV[1]}
    """,
}


async def register_ledger_scripts(store: KeyValueStore) -> None:
    for name, script in LEDGER_SCRIPTS.items():
        await store.register_script(name, script)
