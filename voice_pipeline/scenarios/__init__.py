"""
Persona scenarios for reply generation.

Each scenario defines:
- name: Scenario identifier
- prompt: System instructions for the reply generator
- fallback_reply: Spoken when the reply generator returns nothing
"""
