import io
import shutil
import tempfile
from unittest import mock

import pandas as pd
from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from django.urls import reverse

from gradebook.importer import import_columns
from gradebook.models import Mark
from gradebook.views.base import get_store
from students.forms import MarksImportForm, StudentForm
from students.models import Student

User = get_user_model()


class StudentModelTests(TestCase):

    def test_subjects_follow_class(self):
        student = Student.objects.create(name='Alice Achieng', class_name='PREP-A', sex='F')
        self.assertEqual(student.subjects[0], ('ENG', 'English'))
        self.assertEqual(len(student.subjects), 6)

    def test_to_dict(self):
        student = Student.objects.create(name='Alice Achieng', class_name='S1A', sex='F')
        self.assertEqual(student.to_dict(), {
            'id': str(student.pk),
            'name': 'Alice Achieng',
            'class': 'S1A',
            'sex': 'F',
            'photo': '',
        })


class StudentFormTests(TestCase):

    def test_sex_is_normalised(self):
        form = StudentForm({'name': ' Alice Achieng ', 'class_name': 'S1A', 'sex': 'female'})
        self.assertTrue(form.is_valid(), form.errors)
        self.assertEqual(form.cleaned_data['sex'], 'F')
        self.assertEqual(form.cleaned_data['name'], 'Alice Achieng')

    def test_unknown_sex(self):
        form = StudentForm({'name': 'Alice Achieng', 'class_name': 'S1A', 'sex': 'X'})
        self.assertFalse(form.is_valid())
        self.assertIn('sex', form.errors)

    def test_unknown_class(self):
        form = StudentForm({'name': 'Alice Achieng', 'class_name': 'S9Z', 'sex': 'F'})
        self.assertFalse(form.is_valid())
        self.assertIn('class_name', form.errors)


class StudentTestCase(TestCase):
    """Base test case with a logged-in staff user."""

    def setUp(self):
        get_store().cache.clear()
        self.admin_user = User.objects.create_user(
            username='admin',
            password='testpass123',
            is_staff=True
        )
        self.client.force_login(self.admin_user)

    def create_student(self, name='Alice Achieng', class_name='S1A', sex='F'):
        return Student.objects.create(name=name, class_name=class_name, sex=sex)

    def create_excel_file(self, rows, class_name='S1A', filename='marks.xlsx'):
        """Create an Excel upload in the marks import layout."""
        df = pd.DataFrame(rows, columns=import_columns(class_name))
        excel_buffer = io.BytesIO()
        with pd.ExcelWriter(excel_buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name=class_name)
        excel_buffer.seek(0)
        return SimpleUploadedFile(
            filename,
            excel_buffer.read(),
            content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        )


class StudentViewTests(StudentTestCase):
    """Tests for the student JSON endpoints."""

    def test_index_requires_login(self):
        self.client.logout()
        response = self.client.get(reverse('students:index'))
        self.assertEqual(response.status_code, 302)

    def test_index_requires_staff(self):
        user = User.objects.create_user(username='teacher', password='testpass123')
        self.client.force_login(user)
        response = self.client.get(reverse('students:index'))
        self.assertEqual(response.status_code, 403)

    def test_index_by_class(self):
        self.create_student('Brian Otieno', 'S1A', 'M')
        self.create_student('Alice Achieng', 'S1A', 'F')
        self.create_student('Carol Wanjiru', 'S2A', 'F')

        response = self.client.get(reverse('students:index'), {'class': 'S1A'})
        self.assertEqual(response.status_code, 200)
        names = [s['name'] for s in response.json()['students']]
        self.assertEqual(names, ['Alice Achieng', 'Brian Otieno'])

    def test_index_unknown_class(self):
        response = self.client.get(reverse('students:index'), {'class': 'S9Z'})
        self.assertEqual(response.status_code, 400)

    def test_create(self):
        response = self.client.post(reverse('students:student_create'), {
            'name': 'Alice Achieng',
            'class_name': 'S1A',
            'sex': 'F',
        })
        self.assertEqual(response.status_code, 201)
        data = response.json()['student']
        self.assertEqual(data['class'], 'S1A')
        self.assertTrue(Student.objects.filter(pk=data['id']).exists())

    def test_create_invalid(self):
        response = self.client.post(reverse('students:student_create'), {'name': '', 'class_name': 'S1A', 'sex': 'F'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('name', response.json()['errors'])
        self.assertFalse(Student.objects.exists())

    def test_create_requires_post(self):
        response = self.client.get(reverse('students:student_create'))
        self.assertEqual(response.status_code, 405)

    def test_detail(self):
        student = self.create_student()
        Mark.objects.create(student=student, year='2024', term='Term 1', subjects={'ENG': 70}, average=70.0)

        response = self.client.get(reverse('students:student_detail', args=[student.pk]))
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['student']['name'], 'Alice Achieng')
        self.assertEqual(len(data['subjects']), 14)
        self.assertEqual(data['marks'][0]['subjects'], {'ENG': 70})

    def test_detail_not_found(self):
        response = self.client.get(reverse('students:student_detail', args=['00000000-0000-0000-0000-000000000000']))
        self.assertEqual(response.status_code, 404)

    def test_edit_keeps_fields_not_sent(self):
        """Only the posted fields change."""
        student = self.create_student()
        response = self.client.post(
            reverse('students:student_edit', args=[student.pk]),
            {'photo': 'photos/alice.jpg'}
        )
        self.assertEqual(response.status_code, 200)
        student.refresh_from_db()
        self.assertEqual(student.photo, 'photos/alice.jpg')
        self.assertEqual(student.name, 'Alice Achieng')
        self.assertEqual(student.class_name, 'S1A')

    def test_edit_invalid(self):
        student = self.create_student()
        response = self.client.post(reverse('students:student_edit', args=[student.pk]), {'sex': 'unknown'})
        self.assertEqual(response.status_code, 400)
        student.refresh_from_db()
        self.assertEqual(student.sex, 'F')

    def test_delete(self):
        student = self.create_student()
        Mark.objects.create(student=student, year='2024', term='Term 1', subjects={'ENG': 70})

        response = self.client.post(reverse('students:student_delete', args=[student.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Student.objects.exists())
        self.assertFalse(Mark.objects.exists())


class MarksImportFormTests(TestCase):

    def data(self, **overrides):
        data = {'class_name': 'S1A', 'year': '2024', 'term': 'Term 1', 'sheets': ''}
        data.update(overrides)
        return data

    def test_rejects_other_file_types(self):
        file = SimpleUploadedFile('marks.csv', b'NAME,SEX', content_type='text/csv')
        form = MarksImportForm(self.data(), {'file': file})
        self.assertFalse(form.is_valid())
        self.assertIn('.xlsx', form.errors['file'][0])

    @override_settings(GRADEBOOK_MAX_FILE_SIZE=10)
    def test_rejects_large_files(self):
        file = SimpleUploadedFile('marks.xlsx', b'x' * 100)
        form = MarksImportForm(self.data(), {'file': file})
        self.assertFalse(form.is_valid())
        self.assertIn('file', form.errors)

    def test_sheets_are_split(self):
        file = SimpleUploadedFile('marks.xlsx', b'x')
        form = MarksImportForm(self.data(sheets='Stream A, Stream B,'), {'file': file})
        self.assertTrue(form.is_valid(), form.errors)
        self.assertEqual(form.cleaned_data['sheets'], ['Stream A', 'Stream B'])


class MarksImportViewTests(StudentTestCase):
    """Tests for the marks upload and status endpoints."""

    def setUp(self):
        super().setUp()
        self.media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.media_root, ignore_errors=True)

    def post_upload(self, file, **extra):
        data = {'file': file, 'class_name': 'S1A', 'year': '2024', 'term': 'Term 1'}
        data.update(extra)
        with override_settings(MEDIA_ROOT=self.media_root):
            return self.client.post(reverse('students:marks_import'), data)

    def test_upload_queues_task(self):
        file = self.create_excel_file([{'NAME': 'Alice Achieng', 'SEX': 'F'}])

        with mock.patch('students.views.bulk_import.import_marks_workbook') as task:
            task.delay.return_value.id = 'task-123'
            response = self.post_upload(file, sheets='S1A')

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json(), {'success': True, 'task_id': 'task-123'})
        args = task.delay.call_args[0]
        self.assertTrue(args[0].startswith(self.media_root))
        self.assertTrue(args[0].endswith('marks.xlsx'))
        self.assertEqual(args[1:], ('S1A', '2024', 'Term 1', ['S1A']))

    def test_upload_invalid_file_type(self):
        file = SimpleUploadedFile('marks.txt', b'content', content_type='text/plain')
        with mock.patch('students.views.bulk_import.import_marks_workbook') as task:
            response = self.post_upload(file)

        self.assertEqual(response.status_code, 400)
        self.assertIn('file', response.json()['errors'])
        task.delay.assert_not_called()

    def test_upload_unknown_class(self):
        file = self.create_excel_file([{'NAME': 'Alice Achieng', 'SEX': 'F'}])
        with mock.patch('students.views.bulk_import.import_marks_workbook') as task:
            response = self.post_upload(file, class_name='S9Z')

        self.assertEqual(response.status_code, 400)
        self.assertIn('class_name', response.json()['errors'])
        task.delay.assert_not_called()

    def test_upload_requires_staff(self):
        user = User.objects.create_user(username='teacher', password='testpass123')
        self.client.force_login(user)
        file = self.create_excel_file([{'NAME': 'Alice Achieng', 'SEX': 'F'}])
        response = self.post_upload(file)
        self.assertEqual(response.status_code, 403)

    def test_status_progress(self):
        with mock.patch('students.views.bulk_import.AsyncResult') as async_result:
            async_result.return_value.state = 'PROGRESS'
            async_result.return_value.info = {'current': 3, 'total': 10}
            response = self.client.get(reverse('students:marks_import_status', args=['task-123']))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'task_id': 'task-123',
            'state': 'PROGRESS',
            'current': 3,
            'total': 10,
        })

    def test_status_success(self):
        result = {'success': True, 'uploaded': 2, 'updated': 0, 'skipped': 1, 'errors': ['Row skipped']}
        with mock.patch('students.views.bulk_import.AsyncResult') as async_result:
            async_result.return_value.state = 'SUCCESS'
            async_result.return_value.result = result
            response = self.client.get(reverse('students:marks_import_status', args=['task-123']))

        self.assertEqual(response.json()['result'], result)

    def test_status_failure(self):
        with mock.patch('students.views.bulk_import.AsyncResult') as async_result:
            async_result.return_value.state = 'FAILURE'
            async_result.return_value.result = RuntimeError('worker lost')
            response = self.client.get(reverse('students:marks_import_status', args=['task-123']))

        self.assertEqual(response.json()['error'], 'worker lost')
