# INCR the key and, if newly created (or missing a TTL), set its expiry atomically.
# Returns {counter, ttl_ms}
LUA_FIXED_WINDOW_INCR_AND_PEXPIRE = """
local counter = redis.call("INCR", KEYS[1])
if tonumber(counter) == 1 then
  redis.call("PEXPIRE", KEYS[1], ARGV[1])
else
  local ttl = redis.call("PTTL", KEYS[1])
  if ttl < 0 then
    redis.call("PEXPIRE", KEYS[1], ARGV[1])
  end
end
local ttl = redis.call("PTTL", KEYS[1])
return {counter, ttl}
"""
