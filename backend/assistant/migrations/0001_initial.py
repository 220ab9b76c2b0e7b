from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Task',
            fields=[
                ('id', models.CharField(max_length=100, primary_key=True, serialize=False)),
                ('text', models.TextField(help_text='Task description')),
                ('completed', models.BooleanField(default=False)),
                ('created_at', models.BigIntegerField(help_text='Creation time in ms since epoch')),
                ('priority', models.CharField(
                    choices=[('low', 'Low'), ('medium', 'Medium'), ('high', 'High')],
                    default='medium',
                    max_length=10,
                )),
                ('ai_suggestion', models.TextField(blank=True, null=True)),
                ('position', models.PositiveIntegerField(db_index=True, default=0)),
            ],
            options={
                'ordering': ['position', 'created_at'],
            },
        ),
    ]
