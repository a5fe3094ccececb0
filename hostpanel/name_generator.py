import re
import random

# Curated word lists for generating friendly subdomains
ADJECTIVES = [
    'swift', 'brave', 'mighty', 'golden', 'silver', 'crimson', 'azure', 'emerald',
    'fierce', 'noble', 'royal', 'epic', 'cosmic', 'stellar', 'radiant', 'frost',
    'shadow', 'mystic', 'ancient', 'iron', 'steel', 'diamond', 'crystal', 'blazing',
    'wild', 'primal', 'clever', 'wise', 'bold', 'daring', 'valiant', 'glorious'
]

NOUNS = [
    'dragon', 'phoenix', 'griffin', 'titan', 'creeper', 'golem', 'knight', 'ranger',
    'falcon', 'eagle', 'raven', 'wolf', 'bear', 'lion', 'tiger', 'panther',
    'kraken', 'leviathan', 'colossus', 'tempest', 'cyclone', 'blizzard', 'forge', 'keep'
]

MAX_LABEL_LENGTH = 63


def sanitize_subdomain(name: str) -> str:
    """Turn free text into a DNS label: 'My Server!' -> 'my-server'"""
    label = (name or '').lower()
    label = re.sub(r'[^a-z0-9-]', '-', label)
    label = re.sub(r'-+', '-', label)
    label = label.strip('-')
    return label[:MAX_LABEL_LENGTH].rstrip('-')


def generate_subdomain() -> str:
    """Generate a friendly subdomain like 'crimson-phoenix-42'"""
    adj = random.choice(ADJECTIVES)
    noun = random.choice(NOUNS)
    return f"{adj}-{noun}-{random.randint(10, 99)}"
