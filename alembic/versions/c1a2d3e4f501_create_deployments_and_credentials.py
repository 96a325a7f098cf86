"""
create deployments, docker_credentials and latest_deployments view

Revision ID: c1a2d3e4f501
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'c1a2d3e4f501'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# (domain, app_name) 별 최신 버전만 보여주는 view
LATEST_DEPLOYMENTS_VIEW = """
CREATE VIEW latest_deployments AS
SELECT d.id, d.request_id, d.domain, d.app_name, d.docker_image, d.port, d.env,
       d.version, d.updated_at, d.deployed_at, d.status, d.created_at
FROM deployments d
JOIN (
    SELECT domain, app_name, MAX(version) AS max_version
    FROM deployments
    GROUP BY domain, app_name
) latest
  ON d.domain = latest.domain
 AND d.app_name = latest.app_name
 AND d.version = latest.max_version
"""


def upgrade() -> None:
    op.create_table(
        'deployments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('request_id', sa.String(36), nullable=False),
        sa.Column('domain', sa.Text(), nullable=False),
        sa.Column('app_name', sa.Text(), nullable=False),
        sa.Column('docker_image', sa.Text(), nullable=False),
        sa.Column('port', sa.Integer(), nullable=False),
        sa.Column('env', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deployed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.UniqueConstraint('domain', 'app_name', 'version', name='uq_deployments_domain_app_version'),
        sa.CheckConstraint(
            "status IN ('pending', 'deploying', 'deployed', 'failed', 'rolled_back')",
            name='ck_deployments_status',
        ),
    )
    op.create_index('idx_deployments_domain_app', 'deployments', ['domain', 'app_name'])
    op.create_index('idx_deployments_status', 'deployments', ['status'])
    op.create_index('idx_deployments_updated_at', 'deployments', ['updated_at'])
    op.create_index('idx_deployments_request_id', 'deployments', ['request_id'])

    op.create_table(
        'docker_credentials',
        sa.Column('registry', sa.String(255), primary_key=True),
        sa.Column('username', sa.Text(), nullable=False),
        sa.Column('password', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
    )

    op.execute(LATEST_DEPLOYMENTS_VIEW)


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS latest_deployments")
    op.drop_table('docker_credentials')
    op.drop_index('idx_deployments_request_id', table_name='deployments')
    op.drop_index('idx_deployments_updated_at', table_name='deployments')
    op.drop_index('idx_deployments_status', table_name='deployments')
    op.drop_index('idx_deployments_domain_app', table_name='deployments')
    op.drop_table('deployments')
