"""Server-side Lua scripts for atomic job state transitions.

Each script touches several keys of one job and runs as a single
atomic step on the Redis server. Per-job key order is fixed:
meta, pending, results, payloads, items.
"""

# KEYS: meta, pending, index_account1, index_account2, ...
# ARGV: ttl_seconds, job_id, created_at_score, index_max_entries,
#       hash_arg_count, field1, value1, ..., combo_key1, combo_key2, ...
# Metadata, the full pending set and the account index entries land
# together or not at all.
CREATE_JOB = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
local ttl = tonumber(ARGV[1])
local index_max = tonumber(ARGV[4])
local hash_end = 5 + tonumber(ARGV[5])
redis.call('HSET', KEYS[1], unpack(ARGV, 6, hash_end))
redis.call('EXPIRE', KEYS[1], ttl)
redis.call('DEL', KEYS[2])
if #ARGV > hash_end then
  redis.call('SADD', KEYS[2], unpack(ARGV, hash_end + 1))
  redis.call('EXPIRE', KEYS[2], ttl)
end
for i = 3, #KEYS do
  redis.call('ZADD', KEYS[i], ARGV[3], ARGV[2])
  redis.call('ZREMRANGEBYRANK', KEYS[i], 0, -(index_max + 1))
  redis.call('EXPIRE', KEYS[i], ttl)
end
return 1
"""

# KEYS: meta, pending, results, payloads
# ARGV: combo_key, counter_field, record_json, payload_json ('' for none)
# Returns false when the job is gone, else
# {removed, known, pending_count, succeeded, failed, timed_out, status, final_emitted}
REPORT_OUTCOME = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return false
end
local removed = redis.call('SREM', KEYS[2], ARGV[1])
local finalized = redis.call('HGET', KEYS[1], 'final_emitted') == '1'
local known = removed == 1 or redis.call('HEXISTS', KEYS[3], ARGV[1]) == 1
local ttl = redis.call('PTTL', KEYS[1])
if known and not finalized then
  redis.call('HSET', KEYS[3], ARGV[1], ARGV[3])
  if ttl > 0 then
    redis.call('PEXPIRE', KEYS[3], ttl)
  end
end
if removed == 1 then
  redis.call('HINCRBY', KEYS[1], ARGV[2], 1)
  redis.call('HINCRBY', KEYS[1], 'processed_count', 1)
  if ARGV[4] ~= '' then
    redis.call('HSET', KEYS[4], ARGV[1], ARGV[4])
    if ttl > 0 then
      redis.call('PEXPIRE', KEYS[4], ttl)
    end
  end
end
local m = redis.call('HMGET', KEYS[1], 'succeeded', 'failed', 'timed_out', 'status', 'final_emitted')
return {removed, known and 1 or 0, redis.call('SCARD', KEYS[2]), m[1], m[2], m[3], m[4], m[5]}
"""

# KEYS: meta, pending, items
# ARGV: items_json, completed_at
# Compare-and-set on final_emitted. Returns {0} when the job is
# missing, still has pending entries, was already finalized, or its
# outcome counters do not add up to expected_total.
FINALIZE = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return {0}
end
if redis.call('HGET', KEYS[1], 'final_emitted') == '1' then
  return {0}
end
if redis.call('SCARD', KEYS[2]) > 0 then
  return {0}
end
local m = redis.call('HMGET', KEYS[1], 'expected_total', 'succeeded', 'failed', 'timed_out')
if tonumber(m[2]) + tonumber(m[3]) + tonumber(m[4]) ~= tonumber(m[1]) then
  return {0}
end
local status = 'Completed'
if tonumber(m[3]) > 0 or tonumber(m[4]) > 0 then
  status = 'CompletedWithErrors'
end
redis.call('HSET', KEYS[1], 'final_emitted', '1', 'status', status, 'completed_at', ARGV[2])
local ttl = redis.call('PTTL', KEYS[1])
if ttl > 0 then
  redis.call('SET', KEYS[3], ARGV[1], 'PX', ttl)
else
  redis.call('SET', KEYS[3], ARGV[1])
end
return {1, status, m[1], m[2], m[3], m[4]}
"""

# KEYS: meta, pending, results, payloads, items
# ARGV: items_json, payload_count_seen, completed_at, error_message
# Moves every pending entry into timed_out and finalizes as TimedOut.
# Refuses with 'payloads_changed' if a success landed after the
# caller read the payloads it assembled items from.
MARK_TIMED_OUT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return {'not_found'}
end
local status = redis.call('HGET', KEYS[1], 'status')
if redis.call('HGET', KEYS[1], 'final_emitted') == '1' or status ~= 'Running' then
  return {'terminal'}
end
local members = redis.call('SMEMBERS', KEYS[2])
if #members == 0 then
  return {'drained'}
end
if redis.call('HLEN', KEYS[4]) ~= tonumber(ARGV[2]) then
  return {'payloads_changed'}
end
local ttl = redis.call('PTTL', KEYS[1])
for _, member in ipairs(members) do
  local provider, chain, account = string.match(member, '^([^:]*):([^:]*):?(.*)$')
  local record = {provider = provider, chain = chain, status = 'TimedOut', error = ARGV[4], updatedAt = ARGV[3]}
  if account ~= nil and account ~= '' then
    record['account'] = account
  end
  redis.call('HSET', KEYS[3], member, cjson.encode(record))
end
if ttl > 0 then
  redis.call('PEXPIRE', KEYS[3], ttl)
end
redis.call('DEL', KEYS[2])
redis.call('HINCRBY', KEYS[1], 'timed_out', #members)
redis.call('HSET', KEYS[1], 'status', 'TimedOut', 'final_emitted', '1', 'completed_at', ARGV[3])
if ttl > 0 then
  redis.call('SET', KEYS[5], ARGV[1], 'PX', ttl)
else
  redis.call('SET', KEYS[5], ARGV[1])
end
local m = redis.call('HMGET', KEYS[1], 'expected_total', 'succeeded', 'failed', 'timed_out')
return {'marked', m[1], m[2], m[3], m[4]}
"""
