# Monitoring and observability helpers
