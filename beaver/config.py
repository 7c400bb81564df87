"""Global configuration for the Beaver MPC core."""

import os

# ---------- Finite-field prime (Mersenne prime M61) ----------
# All share, triple and ciphertext arithmetic is mod PRIME.
PRIME = 2**61 - 1

# ---------- Shamir parameters ----------
NUM_PARTIES = 3   # N
THRESHOLD = 2     # T  (need >= T shares to reconstruct)

# ---------- Trusted-party precomputation pool ----------
DEFAULT_POOL_SIZE = 100   # triples kept ready; refilled below half capacity
DEFAULT_BATCH_SIZE = 10

# ---------- Simulated BFV engine ----------
BFV_DEGREE = 16           # slots per ciphertext component
COMMITMENT_BASE = 3       # generator for linear keygen commitments

# ---------- Party network (used by the HTTP transport) ----------
# Env var BEAVER_PARTY_URL_PREFIX overrides the DNS suffix, e.g.
# ".beaver.svc.cluster.local" in K8s; default works for Docker Compose.
_PARTY_PREFIX = os.environ.get("BEAVER_PARTY_URL_PREFIX", "")
PARTY_URLS = [
    f"http://party-{i}{_PARTY_PREFIX}:{9200 + i}" for i in range(NUM_PARTIES)
]
TRANSPORT_TIMEOUT = float(os.environ.get("BEAVER_TRANSPORT_TIMEOUT", "10.0"))

# ---------- Logging ----------
LOG_LEVEL = os.environ.get("BEAVER_LOG_LEVEL", "INFO")
