"""
Purpose: Central configuration for the offer cascade.
What it does:

Stores all tunable timing/round limits for dispatch:

OFFER_TTL_SECONDS = 45
MAX_ROUNDS = 5
SWEEP_INTERVAL_SECONDS = 5

Values can be overridden from the environment (or a .env file):
DISPATCH_OFFER_TTL_SECONDS, DISPATCH_MAX_ROUNDS, DISPATCH_SWEEP_INTERVAL_SECONDS,
DISPATCH_REQUIRE_EXPLICIT_ACCEPT

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv


@dataclass(frozen=True)
class DispatchPolicy:
    """
    Central configuration for offers, cascading and expiry sweeps.
    """

    # --- Offer timeout ---
    # How long a courier has to accept before the offer expires
    # and cascades to the next candidate.
    offer_ttl_seconds: int = 45

    # --- Cascade bound ---
    # Offers issued per dispatch lifetime. max_rounds * offer_ttl_seconds
    # is the soft upper bound on how long an order waits for a courier.
    max_rounds: int = 5

    # --- Expiry sweeper ---
    sweep_interval_seconds: float = 5

    # --- Assignment mode ---
    # False: the top candidate is assigned immediately (no accept step).
    require_explicit_accept: bool = True

    # How many times issuing is retried after an unexpected open-offer conflict.
    issue_conflict_retries: int = 1

    @property
    def offer_ttl(self) -> timedelta:
        return timedelta(seconds=self.offer_ttl_seconds)

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.offer_ttl_seconds <= 0:
            raise ValueError("offer_ttl_seconds must be > 0")

        if self.max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")

        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        if self.issue_conflict_retries < 0:
            raise ValueError("issue_conflict_retries must be >= 0")


def default_dispatch_policy() -> DispatchPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DispatchPolicy()
    p.validate()
    return p


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_dispatch_policy_from_env() -> DispatchPolicy:
    """
    Build the policy from DISPATCH_* environment variables (a .env file is read first).
    Unset variables keep their defaults.
    """
    load_dotenv()
    defaults = DispatchPolicy()

    ttl = os.getenv("DISPATCH_OFFER_TTL_SECONDS")
    rounds = os.getenv("DISPATCH_MAX_ROUNDS")
    interval = os.getenv("DISPATCH_SWEEP_INTERVAL_SECONDS")
    explicit = os.getenv("DISPATCH_REQUIRE_EXPLICIT_ACCEPT")

    p = DispatchPolicy(
        offer_ttl_seconds=int(ttl) if ttl else defaults.offer_ttl_seconds,
        max_rounds=int(rounds) if rounds else defaults.max_rounds,
        sweep_interval_seconds=float(interval) if interval else defaults.sweep_interval_seconds,
        require_explicit_accept=_env_bool(explicit) if explicit else defaults.require_explicit_accept,
    )
    p.validate()
    return p
