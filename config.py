#!/usr/bin/env python3
"""
Configuration file for the task queue service
Contains the RabbitMQ connection parameters and the pipeline topology
"""

import os
import tempfile

# RabbitMQ Configuration
RABBITMQ_CONFIG = {
    'host': os.environ.get('RABBITMQ_HOST', 'localhost'),
    'port': int(os.environ.get('RABBITMQ_PORT', '5672')),
    'vhost': os.environ.get('RABBITMQ_VHOST', '/'),
    'username': os.environ.get('RABBITMQ_USERNAME', 'guest'),
    'password': os.environ.get('RABBITMQ_PASSWORD', 'guest'),
    'heartbeat': int(os.environ.get('RABBITMQ_HEARTBEAT', '600')),
    'connection_attempts': 3,
    'retry_delay': 5
}

# Task queue configuration
TASK_QUEUE_CONFIG = {
    'exchange': os.environ.get('TASK_QUEUE_EXCHANGE', 'exchange'),
    'exchange_type': 'direct',
    'task_routing_key': 'task',
    'result_routing_key': 'result',
    'http_host': os.environ.get('TASK_QUEUE_HTTP_HOST', '0.0.0.0'),
    'http_port': int(os.environ.get('TASK_QUEUE_HTTP_PORT', '8080')),
    # Directory where results will be saved
    'path_prefix': os.environ.get('TASK_QUEUE_PATH_PREFIX', tempfile.gettempdir()),
    # Seconds slept per reduction step to simulate computation time
    'step_delay': float(os.environ.get('TASK_QUEUE_STEP_DELAY', '10'))
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
