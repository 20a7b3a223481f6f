"""
Condition matching primitives shared by the policy evaluators.

Both functions are pure and never raise: malformed input evaluates to a
non-matching result and is logged.
"""

import ipaddress
from typing import Any

from credproxy.observability import get_logger
from credproxy.schema import ConditionOperator

logger = get_logger(__name__)


def is_in_ip_range(ip: str, cidr: str) -> bool:
    """
    Check whether an IP address falls within a CIDR range.

    A range without a prefix length ("192.168.1.1") matches only that exact
    address string.

    Examples:
        is_in_ip_range("192.168.1.100", "192.168.1.0/24") -> True
        is_in_ip_range("10.0.0.1", "192.168.1.0/24") -> False
        is_in_ip_range("10.0.0.1", "10.0.0.1") -> True
    """
    if "/" not in cidr:
        return ip == cidr

    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError as e:
        logger.warning("invalid_cidr", cidr=cidr, error=str(e))
        return False

    try:
        address = ipaddress.ip_address(ip)
    except ValueError as e:
        logger.warning("invalid_ip_address", ip=ip, error=str(e))
        return False

    # Mixed IPv4/IPv6 never matches.
    return address in network


def values_equal(left: Any, right: Any) -> bool:
    """Equality without bool/int coercion: True never equals 1."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def evaluate_condition(actual: Any, operator: str, expected: Any) -> bool:
    """
    Compare an observed value against a configured one.

    `contains` and `not_contains` only look inside strings; for any other
    operand types they evaluate to False and True respectively.
    """
    try:
        op = ConditionOperator(operator)
    except ValueError:
        logger.warning("unknown_operator", operator=operator)
        return False

    if op is ConditionOperator.EQUALS:
        return values_equal(actual, expected)
    if op is ConditionOperator.NOT_EQUALS:
        return not values_equal(actual, expected)

    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        try:
            if op is ConditionOperator.GREATER_THAN:
                return bool(actual > expected)
            return bool(actual < expected)
        except TypeError:
            return False

    both_strings = isinstance(actual, str) and isinstance(expected, str)
    if op is ConditionOperator.CONTAINS:
        return both_strings and expected in actual
    # NOT_CONTAINS
    if both_strings:
        return expected not in actual
    return True
