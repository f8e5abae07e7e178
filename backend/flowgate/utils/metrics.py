# /flowgate/utils/metrics.py

from prometheus_client import Counter, Histogram

# This file defines all Prometheus metrics used for application monitoring.
# Centralizing them here makes them easy to find and manage.

# Exchange Metrics
exchange_counter = Counter('flow_exchanges_total', 'Flow exchanges processed', ['action', 'status'])
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
screen_transition_counter = Counter('flow_screen_transitions_total', 'Screens returned to the client', ['screen'])

# Data Resolution Metrics
component_fetch_counter = Counter('flow_component_fetches_total', 'Component data fetches', ['tier', 'status'])
external_request_histogram = Histogram('external_request_seconds', 'Outbound HTTP request latency', ['method'])

# Security Metrics
decryption_failure_counter = Counter('flow_decryption_failures_total', 'Requests that failed to decrypt')
webhook_signature_counter = Counter('webhook_signature_verifications_total', 'Webhook signature verifications', ['status'])

# Performance Metrics
cache_operations = Counter('cache_operations_total', 'Cache operations', ['operation', 'status'])
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])
