import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Student',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(db_index=True, max_length=200)),
                ('class_name', models.CharField(choices=[('PREP-A', 'PREP-A'), ('PREP-B', 'PREP-B'), ('S1A', 'S1A'), ('S1B', 'S1B'), ('S1C', 'S1C'), ('S1D', 'S1D'), ('S1E', 'S1E'), ('S2A', 'S2A'), ('S2B', 'S2B'), ('S3A', 'S3A'), ('S3B', 'S3B'), ('S4A', 'S4A'), ('S4B', 'S4B')], db_index=True, help_text='Class code, e.g. S1A or PREP-A', max_length=10)),
                ('sex', models.CharField(choices=[('M', 'Male'), ('F', 'Female')], max_length=1)),
                ('photo', models.CharField(blank=True, default='', help_text="URL or storage path of the student's photo", max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Student',
                'verbose_name_plural': 'Students',
                'ordering': ['class_name', 'name'],
                'indexes': [models.Index(fields=['name', 'class_name'], name='student_name_class_idx')],
            },
        ),
    ]
