# Generated migration for ConversationTurn

from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('workspaces', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='ConversationTurn',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('role', models.CharField(choices=[('user', 'User'), ('assistant', 'Assistant')], max_length=16)),
                ('message', models.TextField()),
                ('citations', models.JSONField(blank=True, default=list, help_text='Citations supporting an assistant answer')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('workspace', models.ForeignKey(help_text="Workspace this turn belongs to", on_delete=django.db.models.deletion.CASCADE, related_name='turns', to='workspaces.workspace')),
            ],
            options={
                'db_table': 'conversation_turns',
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.AddIndex(
            model_name='conversationturn',
            index=models.Index(fields=['workspace', 'created_at'], name='conversatio_workspa_7b3c1d_idx'),
        ),
    ]
