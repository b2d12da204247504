from core.security import generate_webhook_prefix, get_password_hash
from db.session import SessionLocal
from db.models import Automation, Contact, MessageTemplate, Profile
from services.automation.triggers import sync_automation_triggers

WELCOME_NODES = [
    {
        "id": "trigger-1",
        "type": "custom",
        "data": {
            "nodeType": "trigger",
            "type": "webhook_received",
            "label": "Lead form submitted",
            "config": {
                "data_mapping": [
                    {"source": "phone", "destination": "phone"},
                    {"source": "name", "destination": "name"},
                    {"source": "utm_source", "destination": "custom_field", "destination_key": "utm_source"},
                ]
            },
        },
    },
    {
        "id": "tag-1",
        "type": "custom",
        "data": {"nodeType": "action", "type": "add_tag", "label": "Tag as lead", "config": {"tag": "lead"}},
    },
    {
        "id": "text-1",
        "type": "custom",
        "data": {
            "nodeType": "action",
            "type": "send_text_message",
            "label": "Welcome",
            "config": {"message_text": "Hi {{contact.name}}, thanks for reaching out!"},
        },
    },
]
WELCOME_EDGES = [
    {"id": "e1", "source": "trigger-1", "target": "tag-1"},
    {"id": "e2", "source": "tag-1", "target": "text-1"},
]


def main():
    db = SessionLocal()
    try:
        existing = db.query(Profile).filter(Profile.email == "demo@zapflow.dev").first()
        if existing:
            print("Demo profile already exists")
            return
        profile = Profile(
            name="Demo User",
            email="demo@zapflow.dev",
            password_hash=get_password_hash("password"),
            company_name="Demo Store",
            webhook_path_prefix=generate_webhook_prefix(),
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)

        db.add(Contact(user_id=profile.id, name="Prospect Paula", phone="5511987654321", tags=["lead"], custom_fields={}))
        db.add(
            MessageTemplate(
                user_id=profile.id,
                template_name="order_update",
                components=[{"type": "BODY", "text": "Hi {{1}}, your order {{2}} has shipped."}],
            )
        )
        automation = Automation(user_id=profile.id, name="Welcome new leads", nodes=WELCOME_NODES, edges=WELCOME_EDGES)
        db.add(automation)
        db.commit()
        db.refresh(automation)
        sync_automation_triggers(db, automation)
        print(f"Seeded demo profile; webhook URL: /trigger/{profile.webhook_path_prefix}_trigger-1")
    finally:
        db.close()


if __name__ == "__main__":
    main()
