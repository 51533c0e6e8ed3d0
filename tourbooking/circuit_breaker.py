from pybreaker import CircuitBreaker

# Guards calls to the payment provider
payment_circuit_breaker = CircuitBreaker(
    fail_max=3,
    reset_timeout=60,
    name="payment_provider_breaker",
)
