"""System vocabularies seeded into a fresh database."""

ROOT_ROLE_NAME = "Root"
ROOT_ROLE_CATEGORY = "official"

# ============================================================================
# Roles, grouped by the category used for visual grouping
# ============================================================================
SYSTEM_ROLES = [
    # Official
    {"name": "Chairperson", "category": "official"},
    {"name": "Commissioner", "category": "official"},
    {"name": "Legal Counsel", "category": "official"},
    {"name": "Investigator", "category": "official"},
    {"name": "Clerk", "category": "official"},
    {"name": "Evidence Leader", "category": "official"},
    {"name": "Advocate", "category": "official"},
    {"name": ROOT_ROLE_NAME, "category": ROOT_ROLE_CATEGORY},
    # Law enforcement
    {"name": "Police Commissioner", "category": "law_enforcement"},
    {"name": "Lieutenant", "category": "law_enforcement"},
    {"name": "Detective", "category": "law_enforcement"},
    {"name": "Hawks Officer", "category": "law_enforcement"},
    {"name": "Private Investigator", "category": "law_enforcement"},
    # Political
    {"name": "Minister", "category": "political"},
    {"name": "Member of Parliament", "category": "political"},
    {"name": "Political Advisor", "category": "political"},
    {"name": "Political Fixer", "category": "political"},
    {"name": "Delegate", "category": "political"},
    # Business
    {"name": "CEO", "category": "business"},
    {"name": "Director", "category": "business"},
    {"name": "CFO", "category": "business"},
    {"name": "Board Member", "category": "business"},
    {"name": "Shareholder", "category": "business"},
    {"name": "Company", "category": "business"},
    # Witness
    {"name": "Whistleblower", "category": "witness"},
    {"name": "Expert Witness", "category": "witness"},
    {"name": "Character Witness", "category": "witness"},
    {"name": "General Witness", "category": "witness"},
    # Suspect
    {"name": "Accused", "category": "suspect"},
    {"name": "Crime Boss", "category": "suspect"},
    {"name": "Associate", "category": "suspect"},
    {"name": "Enabler", "category": "suspect"},
    # Victim
    {"name": "Victim", "category": "victim"},
    {"name": "Target", "category": "victim"},
    {"name": "Affected Party", "category": "victim"},
    # Civilian
    {"name": "Journalist", "category": "civilian"},
    {"name": "Activist", "category": "civilian"},
    {"name": "Civilian", "category": "civilian"},
    {"name": "Informant", "category": "civilian"},
]

# ============================================================================
# Relationship labels for edges
# ============================================================================
SYSTEM_RELATIONSHIP_TYPES = [
    {"name": "Bribed", "category": "Financial"},
    {"name": "Paid Kickback", "category": "Financial"},
    {"name": "Awarded Tender", "category": "Financial"},
    {"name": "Received Payment", "category": "Financial"},
    {"name": "Money Laundering", "category": "Financial"},
    {"name": "Testified Against", "category": "Legal/Testimony"},
    {"name": "Implicated", "category": "Legal/Testimony"},
    {"name": "Accused", "category": "Legal/Testimony"},
    {"name": "Investigated", "category": "Legal/Testimony"},
    {"name": "Arrested", "category": "Legal/Testimony"},
    {"name": "Worked For", "category": "Organizational"},
    {"name": "Supervised", "category": "Organizational"},
    {"name": "Reported To", "category": "Organizational"},
    {"name": "Partnered With", "category": "Organizational"},
    {"name": "Director Of", "category": "Organizational"},
    {"name": "Related To", "category": "Personal"},
    {"name": "Associated With", "category": "Personal"},
    {"name": "Friend Of", "category": "Personal"},
    {"name": "Influenced", "category": "Personal"},
]

# ============================================================================
# Event types for the timeline
# ============================================================================
SYSTEM_EVENT_TYPES = [
    {"name": "Arrest", "icon": "Handcuffs", "color": "#ef4444"},
    {"name": "Accusation", "icon": "AlertTriangle", "color": "#f97316"},
    {"name": "Death", "icon": "Skull", "color": "#18181b"},
    {"name": "Meeting", "icon": "Users", "color": "#3b82f6"},
    {"name": "Testimony", "icon": "FileText", "color": "#8b5cf6"},
    {"name": "Appointment", "icon": "Briefcase", "color": "#10b981"},
    {"name": "Resignation", "icon": "LogOut", "color": "#6b7280"},
    {"name": "Other", "icon": "HelpCircle", "color": "#9ca3af"},
]

CUSTOM_EVENT_TYPE_ICON = "HelpCircle"
CUSTOM_EVENT_TYPE_COLOR = "#6366f1"
