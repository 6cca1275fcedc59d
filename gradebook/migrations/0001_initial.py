import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('students', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Mark',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('year', models.CharField(help_text='Academic year, e.g. 2024', max_length=4)),
                ('term', models.CharField(choices=[('Term 1', 'Term 1'), ('Term 2', 'Term 2'), ('Term 3', 'Term 3')], max_length=10)),
                ('subjects', models.JSONField(blank=True, default=dict, help_text='Subject code to score mapping')),
                ('total', models.FloatField(blank=True, help_text='Sum of entered subject scores', null=True)),
                ('average', models.FloatField(blank=True, help_text='Total divided by the number of entered subjects', null=True)),
                ('rank', models.PositiveSmallIntegerField(blank=True, help_text='Position within the class for this year and term', null=True)),
                ('status', models.CharField(blank=True, max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='marks', to='students.student')),
            ],
            options={
                'verbose_name': 'Mark',
                'verbose_name_plural': 'Marks',
                'db_table': 'student_mark',
                'ordering': ['year', 'term'],
                'indexes': [models.Index(fields=['year', 'term'], name='mark_year_term_idx')],
                'constraints': [models.UniqueConstraint(fields=('student', 'year', 'term'), name='unique_mark_per_student_term')],
            },
        ),
    ]
