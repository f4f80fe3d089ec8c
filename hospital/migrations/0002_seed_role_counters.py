from django.db import migrations

PREFIXES = ["A", "D", "S", "U"]


def create_counters(apps, schema_editor):
    RoleCounter = apps.get_model("hospital", "RoleCounter")
    for prefix in PREFIXES:
        RoleCounter.objects.get_or_create(role_prefix=prefix, defaults={"last_id": 0})


class Migration(migrations.Migration):

    dependencies = [
        ('hospital', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(create_counters, migrations.RunPython.noop),
    ]
