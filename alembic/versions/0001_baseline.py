"""Baseline migration - workspaces, integrations, tickets

Revision ID: 0001_baseline
Revises: 
Create Date: 2026-10-18

Creates tenant, integration and ticket tables and seeds the global
ticket status / priority catalog.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tables and seed the ticket catalog."""
    
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()
    
    # ==========================================================================
    # Workspaces & members
    # ==========================================================================
    op.execute('''
        CREATE TABLE workspaces (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) UNIQUE NOT NULL,
            display_name VARCHAR(255) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            token_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    
    op.execute('''
        CREATE TABLE workspace_members (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role VARCHAR(50) NOT NULL DEFAULT 'member',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_workspace_members_workspace_user UNIQUE (workspace_id, user_id)
        )
    ''')
    op.execute('CREATE INDEX idx_workspace_members_user_id ON workspace_members(user_id)')
    
    # ==========================================================================
    # Integrations
    # ==========================================================================
    op.execute('''
        CREATE TABLE integrations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            integration_type VARCHAR(50) NOT NULL DEFAULT 'tracker',
            provider VARCHAR(50) NOT NULL,
            jira_type VARCHAR(50),
            url VARCHAR(500),
            username VARCHAR(255),
            api_key TEXT,
            filter_query TEXT,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            connected BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_integrations_workspace_type '
        'ON integrations(workspace_id, integration_type)'
    )
    
    # ==========================================================================
    # Assignment targets
    # ==========================================================================
    for table in ('agents', 'workflows'):
        op.execute(f'''
            CREATE TABLE {table} (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
                name VARCHAR(255) NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
        ''')
        op.execute(f'CREATE INDEX idx_{table}_workspace_id ON {table}(workspace_id)')
    
    # ==========================================================================
    # Ticket catalog
    # ==========================================================================
    op.execute('''
        CREATE TABLE ticket_statuses (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) UNIQUE NOT NULL,
            color VARCHAR(255) NOT NULL
        )
    ''')
    op.execute('''
        CREATE TABLE ticket_priorities (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) UNIQUE NOT NULL,
            color VARCHAR(255) NOT NULL,
            value INTEGER NOT NULL
        )
    ''')
    op.execute('''
        INSERT INTO ticket_statuses (id, name, color) VALUES
            ('55555555-5555-5555-5555-555555555555', 'New', 'bg-blue-500/20 text-blue-400'),
            ('66666666-6666-6666-6666-666666666666', 'To Do', 'bg-purple-500/20 text-purple-400'),
            ('77777777-7777-7777-7777-777777777777', 'InProgress', 'bg-yellow-500/20 text-yellow-400'),
            ('88888888-8888-8888-8888-888888888888', 'Completed', 'bg-emerald-500/20 text-emerald-400')
    ''')
    op.execute('''
        INSERT INTO ticket_priorities (id, name, color, value) VALUES
            ('11111111-1111-1111-1111-111111111111', 'Low', 'bg-slate-500/10 text-slate-400 border border-slate-500/20', 1),
            ('22222222-2222-2222-2222-222222222222', 'Medium', 'bg-blue-500/10 text-blue-400 border border-blue-500/20', 2),
            ('33333333-3333-3333-3333-333333333333', 'High', 'bg-orange-500/10 text-orange-400 border border-orange-500/20', 3),
            ('44444444-4444-4444-4444-444444444444', 'Critical', 'bg-red-500/10 text-red-400 border border-red-500/20', 4)
    ''')
    
    # ==========================================================================
    # Tickets
    # ==========================================================================
    op.execute('''
        CREATE TABLE tickets (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
            title VARCHAR(500) NOT NULL,
            description TEXT,
            status_id UUID REFERENCES ticket_statuses(id) ON DELETE SET NULL,
            priority_id UUID REFERENCES ticket_priorities(id) ON DELETE SET NULL,
            integration_id UUID REFERENCES integrations(id) ON DELETE SET NULL,
            external_ticket_id VARCHAR(255),
            assigned_agent_id UUID REFERENCES agents(id) ON DELETE SET NULL,
            assigned_workflow_id UUID REFERENCES workflows(id) ON DELETE SET NULL,
            is_internal BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_tickets_integration_external UNIQUE (integration_id, external_ticket_id),
            CONSTRAINT ck_tickets_external_ref_pair CHECK (
                (integration_id IS NULL AND external_ticket_id IS NULL)
                OR (integration_id IS NOT NULL AND external_ticket_id IS NOT NULL)
            )
        )
    ''')
    op.execute('CREATE INDEX idx_tickets_workspace_id ON tickets(workspace_id)')
    
    op.execute('''
        CREATE TABLE ticket_comments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            author VARCHAR(255) NOT NULL,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_ticket_comments_ticket_id ON ticket_comments(ticket_id)')


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        'ticket_comments',
        'tickets',
        'ticket_priorities',
        'ticket_statuses',
        'workflows',
        'agents',
        'integrations',
        'workspace_members',
        'users',
        'workspaces',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table}')
