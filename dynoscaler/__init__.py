"""
Dynoscaler scales Heroku workers proportionally to RabbitMQ queues.

It combines the number of ready and unacknowledged messages in each queue
with pre-defined message to worker ratios to decide how many dynos each
process type should run.
"""

__version__ = "0.1.0"
