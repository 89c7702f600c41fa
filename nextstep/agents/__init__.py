"""Agents package for next-action resolution."""

from nextstep.agents.aggregator import StateAggregatorAgent
from nextstep.agents.decisions import DecisionProtocol, parse_decision_id
from nextstep.agents.enforcement import EnforcementAgent, EnforcementPolicyStore
from nextstep.agents.merge_readiness import evaluate
from nextstep.agents.resolver import EnforcementRequired, PriorityResolverAgent

__all__ = [
    "StateAggregatorAgent",
    "DecisionProtocol",
    "parse_decision_id",
    "EnforcementAgent",
    "EnforcementPolicyStore",
    "evaluate",
    "EnforcementRequired",
    "PriorityResolverAgent",
]
