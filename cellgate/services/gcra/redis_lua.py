"""Redis Lua scripts for GCRA rate limiting.

Redis runs a script atomically, so reading the TAT, evaluating and writing
the new TAT cannot interleave with another caller on the same key. The
arithmetic mirrors evaluator.py exactly; every value is an integer number
of microseconds, which Lua's doubles represent without loss at epoch scale.

KEYS[1] = bucket key
ARGV[1] = now_us
ARGV[2] = emission_interval_us
ARGV[3] = burst
ARGV[4] = cost (allow_n) or n (allow_at_most)

Reply: {admitted, remaining, retry_after_us, reset_after_us}
"""

_PRELUDE = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local interval = tonumber(ARGV[2])
    local burst = tonumber(ARGV[3])
    local cost = tonumber(ARGV[4])
    local burst_offset = burst * interval

    -- Absent key (GET returns false) means the bucket is drained
    local tat = tonumber(redis.call('GET', key))
    if not tat or tat < now then
        tat = now
    end

    local function headroom(at)
        local units = math.floor((now - (at - burst_offset)) / interval)
        if units < 0 then return 0 end
        if units > burst then return burst end
        return units
    end

    -- Idle keys expire once a full bucket would have drained
    local function commit(new_tat)
        local ttl_ms = math.ceil(burst_offset / 1000)
        if ttl_ms < 1 then ttl_ms = 1 end
        redis.call('SET', key, string.format('%d', new_tat), 'PX', ttl_ms)
    end
"""

GCRA_ALLOW_N_SCRIPT = _PRELUDE + """
    -- More than the bucket can ever hold: never satisfiable
    if cost > burst then
        return {0, headroom(tat), -1, tat - now}
    end

    local new_tat = tat + cost * interval
    local allow_at = new_tat - burst_offset

    if allow_at > now then
        -- Denied: state is left untouched
        return {0, headroom(tat), allow_at - now, tat - now}
    end

    commit(new_tat)
    local remaining = math.floor((now - allow_at) / interval)
    if remaining > burst then remaining = burst end
    return {cost, remaining, 0, new_tat - now}
"""

GCRA_ALLOW_AT_MOST_SCRIPT = _PRELUDE + """
    local available = headroom(tat)
    if available < 1 then
        local allow_at = tat - burst_offset + interval
        return {0, 0, allow_at - now, tat - now}
    end

    local admitted = cost
    if available < admitted then admitted = available end
    local new_tat = tat + admitted * interval

    commit(new_tat)
    return {admitted, available - admitted, 0, new_tat - now}
"""
