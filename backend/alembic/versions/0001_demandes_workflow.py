"""demandes workflow tables

Revision ID: 0001_demandes_workflow
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_demandes_workflow"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("nom", sa.String(length=120), nullable=True),
        sa.Column("prenom", sa.String(length=120), nullable=True),
        sa.Column("telephone", sa.String(length=40), nullable=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="employe"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "projets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("nom", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("actif", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "projet_membres",
        sa.Column("projet_id", sa.Uuid(), sa.ForeignKey("projets.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("doc_type", sa.String(length=10), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("counter", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("doc_type", "year", name="uq_doc_type_year"),
    )

    op.create_table(
        "demandes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("numero", sa.String(length=60), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("type_demande", sa.String(length=20), nullable=False, server_default="principale"),
        sa.Column("demande_parent_id", sa.Uuid(), sa.ForeignKey("demandes.id"), nullable=True),
        sa.Column("motif_sous_demande", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=60), nullable=False),
        sa.Column("status_precedent", sa.String(length=60), nullable=True),
        sa.Column("nombre_rejets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejet_motif", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("technicien_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("projet_id", sa.Uuid(), sa.ForeignKey("projets.id"), nullable=False),
        sa.Column("livreur_assigne_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("commentaires", sa.Text(), nullable=True),
        sa.Column("cout_total", sa.Numeric(14, 2), nullable=True),
        sa.Column("date_creation", sa.DateTime(timezone=True), nullable=False),
        sa.Column("date_modification", sa.DateTime(timezone=True), nullable=False),
        sa.Column("date_livraison_souhaitee", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_sortie", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_reception_livreur", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_livraison", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_validation_finale", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_cloture", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_demandes_numero", "demandes", ["numero"], unique=True)
    op.create_index("ix_demandes_status", "demandes", ["status"])
    op.create_index("ix_demandes_technicien_id", "demandes", ["technicien_id"])
    op.create_index("ix_demandes_projet_id", "demandes", ["projet_id"])
    op.create_index("ix_demandes_demande_parent_id", "demandes", ["demande_parent_id"])

    op.create_table(
        "items_demande",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("demande_id", sa.Uuid(), sa.ForeignKey("demandes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("article_id", sa.String(length=80), nullable=True),
        sa.Column("reference", sa.String(length=80), nullable=True),
        sa.Column("designation", sa.String(length=255), nullable=False),
        sa.Column("unite", sa.String(length=30), nullable=False, server_default="piece"),
        sa.Column("quantite_demandee", sa.Integer(), nullable=False),
        sa.Column("quantite_validee", sa.Integer(), nullable=True),
        sa.Column("quantite_sortie", sa.Integer(), nullable=True),
        sa.Column("quantite_recue", sa.Integer(), nullable=True),
        sa.Column("prix_unitaire", sa.Numeric(14, 2), nullable=True),
        sa.Column("commentaire", sa.Text(), nullable=True),
        sa.Column("ordre", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_items_demande_demande_id", "items_demande", ["demande_id"])

    op.create_table(
        "validation_signatures",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("demande_id", sa.Uuid(), sa.ForeignKey("demandes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("commentaire", sa.Text(), nullable=True),
        sa.Column("signature", sa.String(length=64), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_validation_signatures_demande_id", "validation_signatures", ["demande_id"])

    op.create_table(
        "history_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("demande_id", sa.Uuid(), sa.ForeignKey("demandes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("ancien_status", sa.String(length=60), nullable=True),
        sa.Column("nouveau_status", sa.String(length=60), nullable=True),
        sa.Column("commentaire", sa.Text(), nullable=True),
        sa.Column("signature", sa.String(length=64), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_history_entries_demande_id", "history_entries", ["demande_id"])
    op.create_index("ix_history_entries_timestamp", "history_entries", ["timestamp"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("titre", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("lu", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("demande_id", sa.Uuid(), sa.ForeignKey("demandes.id", ondelete="SET NULL"), nullable=True),
        sa.Column("projet_id", sa.Uuid(), sa.ForeignKey("projets.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_lu", "notifications", ["lu"])

    op.create_table(
        "validations_reception",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("demande_id", sa.Uuid(), sa.ForeignKey("demandes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("valide_par", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("statut", sa.String(length=30), nullable=False),
        sa.Column("refuser_tout", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("commentaire_general", sa.Text(), nullable=True),
        sa.Column("sous_demande_id", sa.Uuid(), sa.ForeignKey("demandes.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_validations_reception_demande_id", "validations_reception", ["demande_id"])

    op.create_table(
        "validation_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "validation_id",
            sa.Uuid(),
            sa.ForeignKey("validations_reception.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_id", sa.Uuid(), sa.ForeignKey("items_demande.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantite_validee", sa.Integer(), nullable=False),
        sa.Column("quantite_recue", sa.Integer(), nullable=False),
        sa.Column("quantite_acceptee", sa.Integer(), nullable=False),
        sa.Column("quantite_refusee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("statut", sa.String(length=30), nullable=False),
        sa.Column("motif_refus", sa.String(length=30), nullable=True),
        sa.Column("commentaire", sa.Text(), nullable=True),
        sa.Column("photos", sa.JSON(), nullable=True),
    )
    op.create_index("ix_validation_items_validation_id", "validation_items", ["validation_id"])

    op.create_table(
        "livraisons",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("demande_id", sa.Uuid(), sa.ForeignKey("demandes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("livreur_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("prepare_par", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("statut", sa.String(length=30), nullable=False, server_default="prete"),
        sa.Column("commentaire", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_livraisons_demande_id", "livraisons", ["demande_id"])

    op.create_table(
        "items_livraison",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("livraison_id", sa.Uuid(), sa.ForeignKey("livraisons.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "item_demande_id",
            sa.Uuid(),
            sa.ForeignKey("items_demande.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("quantite_livree", sa.Integer(), nullable=False),
    )
    op.create_index("ix_items_livraison_livraison_id", "items_livraison", ["livraison_id"])
    op.create_index("ix_items_livraison_item_demande_id", "items_livraison", ["item_demande_id"])


def downgrade() -> None:
    op.drop_table("items_livraison")
    op.drop_table("livraisons")
    op.drop_table("validation_items")
    op.drop_table("validations_reception")
    op.drop_table("notifications")
    op.drop_table("history_entries")
    op.drop_table("validation_signatures")
    op.drop_table("items_demande")
    op.drop_table("demandes")
    op.drop_table("document_sequences")
    op.drop_table("projet_membres")
    op.drop_table("projets")
    op.drop_table("users")
