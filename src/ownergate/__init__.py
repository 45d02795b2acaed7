"""ownergate — owner-scoped data-access gateway.

Every request that reads or mutates user-owned data passes through this
gateway: rate limiting, token parsing, identity resolution, authorization,
and a per-request database security scope. Small writes can be coalesced
into batched round trips without losing per-caller error isolation.
"""

__version__ = "0.1.0"
