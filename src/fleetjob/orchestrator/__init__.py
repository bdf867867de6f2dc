"""Orchestration engine for fleet batch jobs.

One job state file drives everything: the scheduler provisions machines,
feeds their task slots from the queue, fetches results and deletes machines
once the queue is drained, writing the state file after every step.
"""
