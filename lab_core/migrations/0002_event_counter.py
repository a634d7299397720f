from django.db import migrations, models
from django.db.models import Max


FEED_COUNTER = "lab_event"


def seed_counter(apps, schema_editor):
    EventCounter = apps.get_model("lab_core", "EventCounter")
    LabEvent = apps.get_model("lab_core", "LabEvent")
    top = LabEvent.objects.aggregate(top=Max("seq"))["top"] or 0
    EventCounter.objects.update_or_create(name=FEED_COUNTER, defaults={"last_value": top})


class Migration(migrations.Migration):

    dependencies = [
        ("lab_core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="EventCounter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=32, unique=True)),
                ("last_value", models.PositiveBigIntegerField(default=0)),
            ],
        ),
        migrations.AlterField(
            model_name="labevent",
            name="seq",
            field=models.BigIntegerField(primary_key=True, serialize=False),
        ),
        migrations.RunPython(seed_counter, migrations.RunPython.noop),
    ]
